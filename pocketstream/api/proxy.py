"""
Forwarding of application traffic to the web application.

The host listens in front of the web application it launched. Every request
that no administrative route claims is relayed to the application's own
HTTP address, so writes to the database pass through the write gate first.

Invariants:
    - The catch-all router is included after every administrative router
    - Method, path, query string, headers and body reach the application as sent
    - An unreachable application answers 502; it is never reported as a gate rejection
"""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

logger = logging.getLogger(__name__)

FORWARDED_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]

# Connection-scoped headers plus those httpx recomputes
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
        "content-encoding",
    }
)


def _filter_headers(headers: httpx.Headers | list[tuple[str, str]]) -> list[tuple[str, str]]:
    items = headers.multi_items() if isinstance(headers, httpx.Headers) else headers
    return [(name, value) for name, value in items if name.lower() not in HOP_BY_HOP_HEADERS]


class AppProxy:
    """Relays requests to the web application over HTTP.

    Attributes:
        upstream_url: Base URL of the web application
    """

    def __init__(
        self,
        upstream_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.upstream_url = upstream_url
        self._client = httpx.AsyncClient(
            base_url=upstream_url,
            transport=transport,
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
        )

    async def forward(self, request: Request) -> Response:
        """Send request upstream and return the application's response."""
        try:
            upstream = await self._client.request(
                request.method,
                request.url.path,
                params=request.query_params.multi_items(),
                headers=_filter_headers(request.headers.items()),
                content=await request.body(),
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"Web application unreachable: {e}",
                extra={"method": request.method, "path": request.url.path},
            )
            return JSONResponse(
                status_code=502,
                content={
                    "error": "Web application is not reachable",
                    "error_code": "UPSTREAM_UNAVAILABLE",
                },
            )

        response = Response(content=upstream.content, status_code=upstream.status_code)
        for name, value in _filter_headers(upstream.headers):
            response.headers.append(name, value)
        return response

    async def close(self) -> None:
        await self._client.aclose()


router = APIRouter()


@router.api_route("/{path:path}", methods=FORWARDED_METHODS, include_in_schema=False)
async def forward(request: Request) -> Response:
    """Relay any request not claimed by an administrative route."""
    proxy: AppProxy = request.app.state.proxy
    return await proxy.forward(request)
