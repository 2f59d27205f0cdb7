"""Relay requests to the single configured upstream."""

import logging
from typing import Iterable, List, Optional, Tuple

import httpx
from fastapi import Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .models import CapturedResponse

logger = logging.getLogger(__name__)

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)
# Captured bodies are replayed decoded, so these no longer describe them.
_DECODED_BODY_HEADERS = frozenset({"content-encoding", "content-length"})

HeaderList = List[Tuple[str, str]]


def join_path(base: str, path: str) -> str:
    """Join two URL paths with exactly one slash between them."""
    base_slash = base.endswith("/")
    path_slash = path.startswith("/")
    if base_slash and path_slash:
        return base + path[1:]
    if not base_slash and not path_slash:
        return f"{base}/{path}"
    return base + path


def build_upstream_url(upstream: httpx.URL, raw_path: str, query: str) -> str:
    """Rewrite scheme/host to the upstream, prefixing its base path."""
    path = join_path(upstream.raw_path.decode("ascii").split("?", 1)[0], raw_path)
    base_query = upstream.query.decode("ascii")
    if base_query and query:
        query = f"{base_query}&{query}"
    else:
        query = base_query or query
    url = f"{upstream.scheme}://{upstream.netloc.decode('ascii')}{path}"
    if query:
        url = f"{url}?{query}"
    return url


def _connection_tokens(headers: Iterable[Tuple[str, str]]) -> set:
    tokens = set()
    for key, value in headers:
        if key.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def filter_headers(
    headers: Iterable[Tuple[str, str]], extra_drop: frozenset = frozenset()
) -> HeaderList:
    """Drop hop-by-hop headers, including any named by Connection."""
    headers = list(headers)
    drop = _HOP_BY_HOP | extra_drop | _connection_tokens(headers)
    return [(k, v) for k, v in headers if k.lower() not in drop]


def outbound_headers(request: Request) -> HeaderList:
    """Inbound headers minus hop-by-hop and Host, plus X-Forwarded-For."""
    headers = filter_headers(request.headers.items(), frozenset({"host"}))
    if request.client is not None:
        prior = [v for k, v in headers if k.lower() == "x-forwarded-for"]
        headers = [(k, v) for k, v in headers if k.lower() != "x-forwarded-for"]
        forwarded = ", ".join(prior + [request.client.host])
        headers.append(("x-forwarded-for", forwarded))
    return headers


def _raw_headers(headers: HeaderList) -> List[Tuple[bytes, bytes]]:
    return [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers]


def _has_body(request: Request) -> bool:
    return (
        "content-length" in request.headers or "transfer-encoding" in request.headers
    )


class Forwarder:
    """Send inbound requests to the upstream over a shared httpx client."""

    def __init__(self, client: httpx.AsyncClient, upstream_url: str):
        self.client = client
        self.upstream = httpx.URL(upstream_url)

    def target_url(self, request: Request) -> str:
        raw_path = request.scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else request.url.path
        path = path.split("?", 1)[0]
        return build_upstream_url(self.upstream, path, request.url.query)

    def _build(self, request: Request, content: Optional[object]) -> httpx.Request:
        # Built directly so the client's default headers are not merged in.
        return httpx.Request(
            request.method,
            self.target_url(request),
            headers=outbound_headers(request),
            content=content,
        )

    async def forward(self, request: Request) -> Response:
        """Stream the exchange through without buffering either body.

        Raises httpx.HTTPError when the upstream cannot be reached.
        """
        content = request.stream() if _has_body(request) else None
        upstream_response = await self.client.send(
            self._build(request, content), stream=True
        )
        response = StreamingResponse(
            upstream_response.aiter_raw(),
            status_code=upstream_response.status_code,
            background=BackgroundTask(upstream_response.aclose),
        )
        response.raw_headers = _raw_headers(
            filter_headers(upstream_response.headers.multi_items())
        )
        return response

    async def capture(self, request: Request, body: bytes) -> CapturedResponse:
        """Run the exchange with the full response buffered in memory.

        Raises httpx.HTTPError when the upstream cannot be reached.
        """
        upstream_response = await self.client.send(self._build(request, body))
        return CapturedResponse(
            status_code=upstream_response.status_code,
            headers=filter_headers(
                upstream_response.headers.multi_items(), _DECODED_BODY_HEADERS
            ),
            body=upstream_response.content,
        )


def replay(captured: CapturedResponse, background: Optional[BackgroundTask] = None) -> Response:
    """Turn a captured upstream response into the caller's response."""
    response = Response(
        content=captured.body,
        status_code=captured.status_code,
        background=background,
    )
    response.raw_headers = _raw_headers(captured.headers) + [
        (b"content-length", str(len(captured.body)).encode("latin-1"))
    ]
    return response
