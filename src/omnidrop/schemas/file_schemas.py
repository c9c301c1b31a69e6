from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FileRequest(BaseModel):
    filename: str = Field(..., description="Bare file name, no separators")
    content: str = Field(..., description="File contents, written as UTF-8")
    directory: Optional[str] = Field(
        None, description="Optional subdirectory below the files base directory"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"filename": "report.txt", "content": "hello", "directory": "reports/2025"}
            ]
        }
    )


class FileCreatedResponse(BaseModel):
    status: str = "ok"
    created: bool = True
    path: str = Field(..., description="Path of the new file relative to the base directory")
