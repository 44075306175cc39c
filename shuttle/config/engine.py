"""
Engine configuration

Pydantic model for the knobs shared by every run of an engine instance.
Conversation definitions and stored settings override the defaults here.
"""

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Engine-wide defaults."""

    max_concurrency: int = Field(
        3,
        ge=1,
        description="Maximum number of model calls and tool handlers running at once",
    )

    default_max_steps: int = Field(
        5,
        ge=1,
        description="Steps per run when neither the conversation nor its settings set one",
    )

    default_max_working_memory_size: int | None = Field(
        None,
        ge=1,
        description="Number of most recent logs rendered into prompts, None for all",
    )

    strict_parsing: bool = Field(
        False,
        description="Treat unterminated stream elements as a step error instead of a warning",
    )

    model_retry: int = Field(
        0,
        ge=0,
        description="Immediate retries of a model call that fails before streaming",
    )
