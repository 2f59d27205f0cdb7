"""FastAPI reverse proxy that transcribes chat-completion exchanges"""

import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from starlette.background import BackgroundTask
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from .config import Config
from .forwarder import Forwarder, replay
from .routes import match_chat_completion
from .transcript_writer import TranscriptJob, TranscriptQueue

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class ProxyEndpoint:
    """ASGI endpoint handing every request to the proxy handler."""

    def __init__(self, handler: Callable[[Request], Awaitable[Response]]):
        self.handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = await self.handler(Request(scope, receive))
        await response(scope, receive, send)


def _configure_logging(debug: bool) -> None:
    """Apply runtime log level from config."""
    level = logging.DEBUG if debug else logging.INFO
    logging.getLogger("chatproxy").setLevel(level)


def _bad_gateway(request: Request, error: httpx.HTTPError) -> Response:
    logger.error(
        "Upstream request failed for %s %s: %s: %s",
        request.method,
        request.url.path,
        type(error).__name__,
        error,
    )
    return PlainTextResponse("Bad Gateway", status_code=502)


def create_app(
    config: Config,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the proxy application

    Args:
        config: Validated proxy configuration
        transport: Optional httpx transport for the upstream client (tests)

    Returns:
        Configured FastAPI app
    """
    _configure_logging(config.serve.debug)
    transcripts = TranscriptQueue(
        config.transcripts.log_dir,
        workers=config.transcripts.workers,
        maxsize=config.transcripts.queue_size,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        timeout = httpx.Timeout(config.upstream.timeout)
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            app.state.forwarder = Forwarder(client, config.upstream.url)
            transcripts.start()
            logger.info("Proxying to upstream %s", config.upstream.url)
            try:
                yield
            finally:
                await transcripts.stop()

    # The catch-all route owns every path, so the docs endpoints are disabled.
    app = FastAPI(
        title="ChatProxy",
        description="Transparent chat-completion proxy with transcript logging",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.transcripts = transcripts

    async def _transcribe(request: Request, model: str) -> Response:
        forwarder: Forwarder = request.app.state.forwarder
        try:
            body = await request.body()
        except Exception as e:
            logger.error("Failed to read request body: %s", e, exc_info=True)
            return PlainTextResponse(
                "Failed to read request body", status_code=500
            )

        try:
            captured = await forwarder.capture(request, body)
        except httpx.HTTPError as e:
            return _bad_gateway(request, e)

        job = TranscriptJob(
            request_path=request.url.path,
            model=model,
            request_body=body,
            response_body=captured.body,
        )
        return replay(captured, background=BackgroundTask(transcripts.submit, job))

    async def proxy(request: Request) -> Response:
        """Forward any request; transcribe chat completions."""
        logger.info("Request: %s %s", request.method, request.url.path)
        matched, model = match_chat_completion(request.url.path)
        if matched and request.method == "POST":
            logger.info("Model: %s", model)
            return await _transcribe(request, model)

        try:
            return await request.app.state.forwarder.forward(request)
        except httpx.HTTPError as e:
            return _bad_gateway(request, e)

    # An ASGI endpoint is not restricted to a method list, so any verb is forwarded.
    app.router.routes.append(Route("/{path:path}", endpoint=ProxyEndpoint(proxy)))
    return app
