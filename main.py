#!/usr/bin/env python3
"""
build-service: FastAPI service that clones a repository, runs build and
publish steps in an isolated workspace and returns outputs plus artifacts.
"""
import argparse
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from app.api.build import router as build_router, get_pipeline
from app.api.metrics import router as metrics_router
from app.core.config import get_config
from app.core.logging import setup_logging
from app.core.request_logging import RequestLoggingMiddleware

VERSION = "1.0.0"

config = get_config()

# Setup structured JSON logging
setup_logging(config.log_level)

logger = logging.getLogger("build.main")

# Remove workspaces left behind by a previous crash (safe, won't crash)
get_pipeline().workspaces.cleanup_stale(config.workspace_retention_hours)

app = FastAPI(
    title="build-service",
    description="Remote build execution: clone, build, collect artifacts, publish",
    version=VERSION,
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(build_router)
app.include_router(metrics_router)


@app.exception_handler(RequestValidationError)
async def bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Unreadable, non-JSON or invalid build requests are a 400."""
    logger.info(f"bad_request path={request.url.path} errors={len(exc.errors())}")
    return JSONResponse(
        status_code=400,
        content={"detail": [{"loc": e.get("loc"), "msg": e.get("msg")} for e in exc.errors()]},
    )


@app.get("/healthcheck")
def healthcheck() -> Response:
    """Health check endpoint: 200 with an empty body."""
    return Response(status_code=200)


def main(argv=None) -> None:
    """Run the service with uvicorn."""
    import uvicorn

    parser = argparse.ArgumentParser(description="build-service")
    parser.add_argument("--bind", default=None, help=f"bind address, e.g. {config.bind}")
    args = parser.parse_args(argv)

    run_config = config.with_bind(args.bind)
    logger.info(f"Listening on {run_config.host}:{run_config.port}")
    uvicorn.run(app, host=run_config.host, port=run_config.port, log_config=None)


if __name__ == "__main__":
    main()
