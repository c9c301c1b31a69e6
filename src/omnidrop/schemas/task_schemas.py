from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskRequest(BaseModel):
    title: str = Field(..., description="Task title, must not be empty")
    note: Optional[str] = Field(None, description="Free-form task note")
    project: Optional[str] = Field(
        None, description="Project name; '/' separates folder levels"
    )
    tags: Optional[List[str]] = Field(None, description="Tag names in order")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "title": "Review PR",
                    "note": "see inbox",
                    "project": "Work/Reviews",
                    "tags": ["urgent", "code"],
                }
            ]
        }
    )


class TaskResponse(BaseModel):
    status: str = "ok"
    created: bool = True
