"""Engine package: run registry, step orchestrator and the Engine facade."""

from .builder import EngineBuilder
from .composition import Registry, compose
from .engine import Engine, InputChannel, InputMessage
from .orchestrator import RunPhase, RunRequest, StepOrchestrator
from .prompt import PromptData, format_log, render_prompt
from .references import ReferenceResolver, parse_reference
from .registry import RunEntry, RunRegistry, RunTicket
from .services import ServiceContainer, ServiceManager

__all__ = [
    "Engine",
    "EngineBuilder",
    "InputChannel",
    "InputMessage",
    "PromptData",
    "ReferenceResolver",
    "Registry",
    "RunEntry",
    "RunPhase",
    "RunRegistry",
    "RunRequest",
    "RunTicket",
    "ServiceContainer",
    "ServiceManager",
    "StepOrchestrator",
    "compose",
    "format_log",
    "parse_reference",
    "render_prompt",
]
