"""Tool and output definition helpers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from ..types import Hook, Output, Tool
from .schema import PydanticSchema, parse_content, validate


def define_tool(
    name: str,
    description: str,
    parameters: type[BaseModel] | None,
    execute: Hook,
    *,
    attributes: type[BaseModel] | None = None,
    retry: int = 0,
    enabled: Hook | None = None,
    install: Hook | None = None,
) -> Tool:
    if retry < 0:
        raise ValueError("retry must be >= 0")
    return Tool(
        name=name,
        handler=execute,
        description=description,
        schema=parameters,
        attributes=attributes,
        retry=retry,
        enabled=enabled,
        install=install,
    )


def define_output(
    type: str,
    description: str = "",
    schema: type[BaseModel] | None = None,
    handler: Hook | None = None,
    **kwargs: Any,
) -> Output:
    return Output(type=type, description=description, schema=schema, handler=handler, **kwargs)


__all__ = ["PydanticSchema", "define_output", "define_tool", "parse_content", "validate"]
