"""Model providers."""

from .mock import ScriptedModel, StreamFailure
from .openai import OpenAIModel

__all__ = ["OpenAIModel", "ScriptedModel", "StreamFailure"]
