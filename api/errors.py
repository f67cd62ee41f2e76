"""
Exception handlers.

Connector and token lifecycle failures render as ``{"error": message}``
with the status code carried by the exception.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from connectors.errors import ConnectorError, ProviderAPIError

logger = logging.getLogger(__name__)


async def connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    body = {"error": exc.message}
    if isinstance(exc, ProviderAPIError) and exc.upstream_status:
        body["upstreamStatus"] = exc.upstream_status
    return JSONResponse(status_code=exc.status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ConnectorError, connector_error_handler)
