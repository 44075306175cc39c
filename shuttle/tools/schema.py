"""Tool schema - Pydantic-based argument validation."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError


def parse_content(content: str) -> Any:
    """Decode element text: JSON when it parses, otherwise the stripped text."""
    text = content.strip()
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class PydanticSchema:
    """Validates decoded arguments against a Pydantic model."""

    def __init__(self, model: type[BaseModel], name: str | None = None) -> None:
        self._model = model
        self.name = name or model.__name__

    @property
    def model(self) -> type[BaseModel]:
        return self._model

    def parse(self, raw: Any) -> BaseModel:
        try:
            if isinstance(raw, str):
                return self._model.model_validate_json(raw)
            return self._model.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(self.name, str(e), e) from e

    def dump(self, raw: Any) -> dict[str, Any]:
        return self.parse(raw).model_dump()

    def to_json_schema(self) -> dict:
        return self._model.model_json_schema()


def validate(model: type[BaseModel] | None, raw: Any, name: str) -> Any:
    """Validate ``raw`` when a model is given; pass it through otherwise."""
    if model is None:
        return raw
    return PydanticSchema(model, name).dump(raw)
