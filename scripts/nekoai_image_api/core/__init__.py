"""Core contracts and helpers."""

from .config import ClientOptions, RetryConfig
from .contracts import (
    UNSET,
    Action,
    CharacterPrompt,
    Center,
    DirectorRequest,
    GenerationRequest,
    Model,
    NormalizedRequest,
    ResultImage,
    StreamEvent,
)
from .errors import (
    ConfigurationError,
    DecodeError,
    NotAnArchiveError,
    NovelAIError,
    ParserResyncWarning,
    TransportError,
    ValidationError,
)

__all__ = [
    "UNSET",
    "Action",
    "CharacterPrompt",
    "Center",
    "ClientOptions",
    "DirectorRequest",
    "GenerationRequest",
    "Model",
    "NormalizedRequest",
    "ResultImage",
    "RetryConfig",
    "StreamEvent",
    "ConfigurationError",
    "DecodeError",
    "NotAnArchiveError",
    "NovelAIError",
    "ParserResyncWarning",
    "TransportError",
    "ValidationError",
]
