"""
Permissive CORS for the device-facing ingest path.

Tracking devices and third-party pages post location reports from any
origin, so the ingest path answers preflight itself and stamps the same
wildcard headers on every response, errors included. The rest of the API
keeps the origin allow-list enforced by Starlette's CORSMiddleware.
"""

from typing import Callable, Dict, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

INGEST_PATH = "/location-updates"

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


class IngestCORSMiddleware(BaseHTTPMiddleware):
    """
    Path-scoped CORS middleware.

    Must be the outermost middleware so its headers win over the
    allow-list CORS layer and OPTIONS never reaches routing.
    """

    def __init__(
        self,
        app: ASGIApp,
        paths: Iterable[str] = (INGEST_PATH,),
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(app)
        self.paths = frozenset(paths)
        self.headers = dict(headers or CORS_HEADERS)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        if request.url.path not in self.paths:
            return await call_next(request)

        if request.method == "OPTIONS":
            return Response(status_code=200, headers=self.headers)

        response = await call_next(request)
        response.headers.update(self.headers)
        return response
