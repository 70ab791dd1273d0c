"""Application entrypoint for the ContractFlow API."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from contractflow.api.v1.errors import map_domain_error
from contractflow.api.v1.router import get_api_router
from contractflow.core.config import get_config
from contractflow.core.exceptions import ContractFlowException
from contractflow.core.startup import bootstrap

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    cfg = get_config()
    app = FastAPI(title=cfg.APP_NAME, version=cfg.APP_VERSION)
    app.include_router(get_api_router())

    @app.exception_handler(ContractFlowException)
    async def contractflow_exception_handler(request: Request, exc: ContractFlowException) -> JSONResponse:
        # Route modules translate errors themselves; this catches anything raised outside them.
        code, envelope = map_domain_error(exc)
        if code >= 500:
            logger.error(
                "api.unhandled_domain_error",
                extra={"event": "api.unhandled_domain_error", "path": request.url.path, "error_code": exc.error_code},
            )
        return JSONResponse(status_code=code, content={"detail": envelope.model_dump()})

    @app.get("/")
    def root() -> dict:
        return {"service": cfg.APP_NAME, "version": cfg.APP_VERSION, "api_prefix": cfg.API_PREFIX}

    return app


# Expose ASGI app for `uvicorn contractflow.main:app`.
app = create_app()


if __name__ == "__main__":
    import uvicorn

    bootstrap()
    uvicorn.run(app, host="0.0.0.0", port=8000)
