"""
Build API route.

POST /build runs the whole pipeline on the request's worker thread and
answers 200 for every pipeline outcome; failures live in the body.
"""
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, Response
from pydantic_core import PydanticSerializationError

from app.core.config import get_config
from app.core.pipeline import BuildPipeline
from app.core.process_runner import SubprocessRunner
from app.core.workspace import WorkspaceManager
from app.schemas.build import BuildRequest, BuildResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["build"])


@lru_cache(maxsize=1)
def get_pipeline() -> BuildPipeline:
    """Shared pipeline built from the service configuration."""
    config = get_config()
    return BuildPipeline(
        workspaces=WorkspaceManager(config.workdir_root),
        runner=SubprocessRunner(timeout=config.command_timeout),
        git_host=config.git_host,
        legacy_checkout_reporting=config.legacy_checkout_reporting,
    )


def render_result(result: BuildResponse) -> Response:
    """Serialize a build result; a serialization failure is a 500."""
    try:
        body = result.model_dump_json()
    except (PydanticSerializationError, ValueError) as e:
        logger.error(f"marshal_failed error_type={type(e).__name__}")
        return PlainTextResponse("Failed to marshal output", status_code=500)
    return Response(content=body, media_type="application/json")


@router.post(
    "/build",
    response_model=BuildResponse,
    responses={400: {"description": "Malformed request body"}, 500: {"description": "Failed to marshal output"}},
)
def build(
    request: BuildRequest,
    pipeline: BuildPipeline = Depends(get_pipeline),
) -> Response:
    """
    Clone a repository, run build steps, collect artifacts and run publish steps.

    ```json
    {"repo": "ian-kent/ssbs", "commit": "master", "artifacts": "ssbs-*.zip",
     "build": [["make"], ["make", "dist"]], "publish": [["make", "publish"]]}
    ```

    Clone, checkout, build and publish failures are reported inside a 200
    response as steps with an `error`.
    """
    state = pipeline.run(request)
    return render_result(state.result)
