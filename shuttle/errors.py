"""Structured error hierarchy for the run engine."""

from __future__ import annotations

from typing import Any


class ShuttleError(Exception):
    def __init__(self, code: str, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.cause = cause

    @classmethod
    def wrap(cls, err: Exception) -> ShuttleError:
        if isinstance(err, ShuttleError):
            return err
        return ShuttleError("UNKNOWN", str(err), err)


class ParseError(ShuttleError):
    """Unterminated or malformed stream elements at end of input."""

    def __init__(self, message: str, elements: list[Any] | None = None) -> None:
        super().__init__("PARSE_ERROR", message)
        self.elements = elements or []


class ValidationError(ShuttleError):
    def __init__(
        self, name: str, message: str, cause: Exception | None = None
    ) -> None:
        super().__init__("VALIDATION_ERROR", f'Invalid "{name}": {message}', cause)
        self.name = name


class ReferenceResolutionError(ValidationError):
    def __init__(self, expression: str, message: str, cause: Exception | None = None) -> None:
        super().__init__(expression, message, cause)
        self.code = "REFERENCE_ERROR"
        self.expression = expression


class ToolExecutionError(ShuttleError):
    def __init__(
        self, tool_name: str, attempts: int, cause: Exception | None = None
    ) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(
            "TOOL_EXECUTION_ERROR",
            f'Tool "{tool_name}" failed after {attempts} attempt(s){detail}',
            cause,
        )
        self.tool_name = tool_name
        self.attempts = attempts


class ModelCallError(ShuttleError):
    def __init__(self, message: str, cause: Exception | None = None, partial: bool = False) -> None:
        super().__init__("MODEL_CALL_ERROR", message, cause)
        # True once part of the stream was dispatched; such a call is not retried
        self.partial = partial


class ConcurrencyViolation(ShuttleError):
    def __init__(self, conversation_id: str, message: str) -> None:
        super().__init__("CONCURRENCY_VIOLATION", f"{conversation_id}: {message}")
        self.conversation_id = conversation_id


class RunAbortedError(ShuttleError):
    def __init__(self, message: str = "Run was aborted") -> None:
        super().__init__("RUN_ABORTED", message)


class EngineNotStartedError(ShuttleError):
    def __init__(self) -> None:
        super().__init__("ENGINE_NOT_STARTED", "Engine must be started before running")
