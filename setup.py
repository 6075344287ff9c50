"""Setup script for aidgpt."""

from setuptools import find_packages, setup

setup(
    name="aidgpt",
    version="0.1.0",
    description="Local AI file assistant: natural-language prompts to file-system actions",
    author="aidgpt Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "structlog>=24.1.0",
        "fastapi>=0.109.0",
        "uvicorn[standard]>=0.27.0",
        "httpx>=0.26.0",
        "redis>=5.0.1",
        "click>=8.1.7",
        "rich>=13.7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "aidgpt=aidgpt.cli:main",
        ],
    },
    python_requires=">=3.10",
)
