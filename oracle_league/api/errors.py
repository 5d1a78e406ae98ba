import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from oracle_league.core.errors import OracleError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Traduce cada tipo de error del motor a su status HTTP."""

    @app.exception_handler(OracleError)
    async def oracle_error_handler(request: Request, exc: OracleError):
        if exc.http_status >= 500:
            logger.error(
                f"{exc.kind} en {request.method} {request.url.path}: {exc.message}",
                extra={"kind": exc.kind, **exc.context},
            )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())
