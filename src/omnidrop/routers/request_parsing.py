import json
from typing import Any, Dict, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from omnidrop.errors import validation_error

ModelT = TypeVar("ModelT", bound=BaseModel)

INVALID_JSON_MESSAGE = "Invalid JSON format in request body"


async def read_json_object(request: Request) -> Dict[str, Any]:
    """The body must be a JSON object; anything else is a validation_error."""
    body = await request.body()
    try:
        data = json.loads(body)
    except ValueError as e:
        raise validation_error(INVALID_JSON_MESSAGE).with_cause(e)
    if not isinstance(data, dict):
        raise validation_error(INVALID_JSON_MESSAGE)
    return data


def require_text(data: Dict[str, Any], field: str, message: str) -> None:
    value = data.get(field)
    if not isinstance(value, str) or value == "":
        raise validation_error(message)


def parse_model(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise validation_error(f"Invalid field {location}: {first.get('msg')}").with_cause(e)
