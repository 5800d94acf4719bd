# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI application for the Cortex Memory Service.

The lifespan builds the gateways and services once (see ``storage.factory``)
and stores them on ``app.state``.  Errors raised anywhere below the routes are
mapped to ``{"error": ...}`` bodies with the matching status code here.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..config import Settings
from ..config import settings as default_settings
from ..exceptions import CortexMemoryError
from ..logging_config import configure_logging
from ..storage.factory import ServiceComponents, build_components, initialize_components
from .api import graph, health, memories, search

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGES = {
    500: "Internal server error",
    503: "Service temporarily unavailable",
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CortexMemoryError)
    async def handle_service_error(request: Request, exc: CortexMemoryError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc}")
            return _error(exc.status_code, GENERIC_ERROR_MESSAGES.get(exc.status_code, "Internal server error"))
        return _error(exc.status_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, _describe_validation_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return _error(500, GENERIC_ERROR_MESSAGES[500])


def create_app(settings: Settings | None = None, components: ServiceComponents | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; defaults to the environment-derived settings
        components: Pre-built components (tests); built in the lifespan otherwise
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.server.log_level)
        logger.info(f"Cortex Memory Service {__version__} starting...")

        owned = app.state.components is None
        if owned:
            app.state.components = build_components(settings)
        await initialize_components(app.state.components, strict=settings.qdrant.strict_startup)

        yield

        if owned:
            logger.info("Shutting down Cortex Memory Service components...")
            await app.state.components.close()
            app.state.components = None

    app = FastAPI(
        title="Cortex Memory Service",
        description="Personal memory store with hybrid search and automatic linking",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.components = components

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(memories.router, prefix="/api")
    app.include_router(search.router, prefix="/api")
    app.include_router(graph.router, prefix="/api")
    app.include_router(health.router)

    return app


def main() -> None:
    """Run the HTTP server with uvicorn."""
    import uvicorn

    configure_logging(default_settings.server.log_level)
    uvicorn.run(
        create_app(default_settings),
        host=default_settings.server.host,
        port=default_settings.server.port,
        log_level=default_settings.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
