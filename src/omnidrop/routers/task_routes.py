import logging

from fastapi import APIRouter, Depends, Request, status

from omnidrop.dependencies.app_deps import get_task_bridge
from omnidrop.dependencies.auth_deps import require_scopes
from omnidrop.routers.request_parsing import parse_model, read_json_object, require_text
from omnidrop.schemas.common_schemas import ErrorResponse
from omnidrop.schemas.oauth_schemas import TokenClaims
from omnidrop.schemas.task_schemas import TaskRequest, TaskResponse
from omnidrop.services.task_bridge import TaskBridge

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tasks"])


@router.post(
    "/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_200_OK,
    summary="Create a task through the task bridge",
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": TaskRequest.model_json_schema()}},
        }
    },
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse, "description": "Invalid body"},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse, "description": "Not authenticated"},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse, "description": "Missing tasks:write"},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {
            "model": ErrorResponse,
            "description": "The task bridge failed or reported failure",
        },
    },
)
async def create_task(
    request: Request,
    claims: TokenClaims = Depends(require_scopes("tasks:write")),
    bridge: TaskBridge = Depends(get_task_bridge),
) -> TaskResponse:
    """
    Runs the bridge script with title, note, project and comma-joined tags.
    The bridge gets 30 seconds before it is killed.
    """
    data = await read_json_object(request)
    require_text(data, "title", "Title field is required and cannot be empty")
    task = parse_model(TaskRequest, data)

    logger.debug(f"Creating task for client {claims.client_id!r}")
    await bridge.create_task(task)
    return TaskResponse(status="ok", created=True)
