import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool

from omnidrop.dependencies.app_deps import get_file_writer
from omnidrop.dependencies.auth_deps import require_scopes
from omnidrop.routers.request_parsing import parse_model, read_json_object, require_text
from omnidrop.schemas.common_schemas import ErrorResponse
from omnidrop.schemas.file_schemas import FileCreatedResponse, FileRequest
from omnidrop.schemas.oauth_schemas import TokenClaims
from omnidrop.services.file_writer import FileWriter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Files"])


@router.post(
    "/files",
    response_model=FileCreatedResponse,
    status_code=status.HTTP_200_OK,
    summary="Write a new file below the files directory",
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": FileRequest.model_json_schema()}},
        }
    },
    responses={
        status.HTTP_400_BAD_REQUEST: {
            "model": ErrorResponse,
            "description": "Invalid body, invalid path or file already exists",
        },
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse, "description": "Not authenticated"},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse, "description": "Missing files:write"},
        status.HTTP_409_CONFLICT: {
            "model": ErrorResponse,
            "description": "A concurrent request created the same file first",
        },
        status.HTTP_500_INTERNAL_SERVER_ERROR: {
            "model": ErrorResponse,
            "description": "Directory creation or write failed",
        },
    },
)
async def create_file(
    request: Request,
    claims: TokenClaims = Depends(require_scopes("files:write")),
    writer: FileWriter = Depends(get_file_writer),
) -> FileCreatedResponse:
    data = await read_json_object(request)
    require_text(data, "filename", "Filename field is required and cannot be empty")
    require_text(data, "content", "Content field is required and cannot be empty")
    file_request = parse_model(FileRequest, data)

    result = await run_in_threadpool(
        writer.write, file_request.filename, file_request.content, file_request.directory
    )
    logger.debug(f"Client {claims.client_id!r} wrote {result.path}")
    return FileCreatedResponse(status="ok", created=True, path=result.path)
