from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Body of every non-OAuth error response."""

    status: str = Field("error")
    message: str
    code: str

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"status": "error", "message": "Insufficient permissions", "code": "authorization_error"}
            ]
        }
    )


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
