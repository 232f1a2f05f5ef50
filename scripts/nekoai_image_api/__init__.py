"""NovelAI image client public surface."""

import logging

from .api import NovelAIClient, edit, generate, stream
from .core import (
    Action,
    ClientOptions,
    DirectorRequest,
    GenerationRequest,
    Model,
    ResultImage,
    RetryConfig,
    StreamEvent,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "NovelAIClient",
    "generate",
    "edit",
    "stream",
    "Action",
    "ClientOptions",
    "DirectorRequest",
    "GenerationRequest",
    "Model",
    "ResultImage",
    "RetryConfig",
    "StreamEvent",
]
