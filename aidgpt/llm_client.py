"""Client for the local Ollama chat API."""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from .config import AidConfig
from .errors import LLMError

logger = structlog.get_logger(__name__)

Message = Dict[str, str]


class OllamaClient:
    """Chat completions against a locally running Ollama server."""

    def __init__(
        self,
        config: AidConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Core configuration (host, model name, timeout)
            transport: Optional httpx transport, used by tests
        """
        self.config = config
        self.model = config.ollama_model
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.ollama_host.rstrip("/"),
            timeout=self.config.llm_timeout,
            transport=self._transport,
        )

    def _body(self, messages: List[Message], stream: bool) -> Dict[str, Any]:
        return {"model": self.model, "messages": messages, "stream": stream}

    async def chat(self, messages: List[Message]) -> str:
        """Send a chat request and return the full reply text."""
        logger.debug("llm_chat_request", model=self.model, messages=len(messages))
        try:
            async with self._client() as client:
                response = await client.post("/api/chat", json=self._body(messages, False))
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("llm_chat_failed", model=self.model, error=str(e))
            raise LLMError(f"Model request failed: {e}") from e
        except ValueError as e:
            raise LLMError(f"Model returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise LLMError(f"Model returned unexpected payload: {type(data).__name__}")
        if data.get("error"):
            raise LLMError(str(data["error"]))

        message = data.get("message")
        if not isinstance(message, dict):
            message = {}
        return message.get("content") or data.get("response") or data.get("output") or ""

    async def chat_stream(self, messages: List[Message]) -> AsyncIterator[str]:
        """Stream a chat reply, yielding text deltas until the server reports done."""
        logger.debug("llm_stream_request", model=self.model, messages=len(messages))
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", "/api/chat", json=self._body(messages, True)
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            chunk = json.loads(line)
                        except ValueError:
                            logger.warning("llm_stream_bad_line", line=line[:200])
                            continue
                        if not isinstance(chunk, dict):
                            logger.warning("llm_stream_bad_line", line=line[:200])
                            continue
                        if chunk.get("error"):
                            raise LLMError(str(chunk["error"]))
                        delta = (chunk.get("message") or {}).get("content") or chunk.get("response")
                        if delta:
                            yield delta
                        if chunk.get("done"):
                            break
        except httpx.HTTPError as e:
            logger.error("llm_stream_failed", model=self.model, error=str(e))
            raise LLMError(f"Model stream failed: {e}") from e
