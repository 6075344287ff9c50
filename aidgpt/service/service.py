"""Command service: HTTP front end for the prompt pipeline."""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Set

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from ..config import AidConfig
from ..errors import ActionLimitError, LLMError, PromptValidationError
from ..logger import setup_logging
from ..oplog import OperationLog, build_operation_log
from ..orchestrator import CommandOrchestrator
from .config import CommandServiceConfig
from .models import CommandRequest, CommandResponse, ErrorResponse, HealthResponse

logger = structlog.get_logger(__name__)


def format_sse_frame(payload: dict) -> str:
    """Encode one ``data:`` frame of the event stream."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class CommandService:
    """Service that runs prompts through the pipeline and streams the outcome."""

    def __init__(
        self,
        config: Optional[AidConfig] = None,
        service_config: Optional[CommandServiceConfig] = None,
        orchestrator: Optional[CommandOrchestrator] = None,
        oplog: Optional[OperationLog] = None,
    ):
        """Initialize the command service."""
        self.config = config or AidConfig()
        self.service_config = service_config or CommandServiceConfig()
        self.orchestrator = orchestrator or CommandOrchestrator(
            self.config,
            oplog=oplog or build_operation_log(self.config),
        )
        self._pending: Set[asyncio.Task] = set()
        self.app = FastAPI(title="aidgpt Command Service", lifespan=self._lifespan)
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.service_config.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.get("/")
        async def root():
            return {"service": "aidgpt-command", "version": "0.1.0", "status": "running"}

        @self.app.get("/api/health", response_model=HealthResponse)
        async def health():
            return HealthResponse(ok=True, now=datetime.now(timezone.utc).isoformat())

        @self.app.post(
            "/api/ai/command",
            response_model=CommandResponse,
            responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
        )
        async def run_command(body: CommandRequest, stream: bool = True):
            """Run a prompt; streams SSE frames unless ``stream=false``."""
            if stream:
                return StreamingResponse(
                    self._stream_response(body),
                    media_type="text/event-stream",
                    headers={"Cache-Control": "no-cache, no-transform"},
                )

            try:
                outcome = await self.orchestrator.run(body.prompt, body.files)
            except PromptValidationError as e:
                return JSONResponse(status_code=400, content={"error": str(e)})
            except ActionLimitError as e:
                return JSONResponse(status_code=400, content={"error": str(e), "raw": e.raw})
            except LLMError as e:
                logger.error("Command failed", error=str(e))
                return JSONResponse(status_code=500, content={"error": str(e)})
            return outcome.to_dict()

    async def _stream_response(self, body: CommandRequest) -> AsyncIterator[str]:
        """Stream response generator.

        The pipeline runs in its own task and feeds frames through a queue.
        Starlette cancels this generator when the client disconnects; the task
        is left running so dispatched actions finish and are recorded.
        """
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run_pipeline(body, queue))
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                yield format_sse_frame(frame)
        finally:
            if not task.done():
                logger.info("Client disconnected, finishing pipeline without streaming")
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def _run_pipeline(self, body: CommandRequest, queue: asyncio.Queue) -> None:
        try:
            async for event in self.orchestrator.stream(body.prompt, body.files):
                queue.put_nowait(event.to_dict())
        except Exception as e:
            logger.error("Command stream failed", error=str(e))
            queue.put_nowait({"type": "complete", "data": {"error": str(e)}})
        finally:
            queue.put_nowait(None)

    async def wait_for_pending(self) -> None:
        """Wait for pipelines whose clients went away."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.start()
        yield
        await self.stop()

    async def start(self):
        """Start the command service."""
        setup_logging(self.service_config.service_name, self.config.log_level, self.config.log_json)
        logger.info(
            "Starting command service",
            base=str(self.config.base_dir),
            model=self.config.ollama_model,
            shell_enabled=self.config.allow_shell,
        )
        if self.config.allow_shell:
            logger.warning("Shell actions are enabled and bypass the base directory")

    async def stop(self):
        """Stop the command service."""
        await self.wait_for_pending()
        logger.info("Stopping command service")


def create_app() -> FastAPI:
    """App factory for ``uvicorn --factory``."""
    return CommandService().app


if __name__ == "__main__":
    import uvicorn

    service = CommandService()

    uvicorn.run(
        service.app,
        host=service.service_config.host,
        port=service.service_config.service_port,
        log_level=service.config.log_level.lower(),
    )
