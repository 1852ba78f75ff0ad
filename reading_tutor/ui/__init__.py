"""Generative UI protocol and its reactive interpreter."""

from .schemas import (
    LearningResponse,
    Source,
    SuggestedAction,
    UIPayload,
    validate_payload,
)
from .interpreter import ReactiveSession

__all__ = [
    "LearningResponse",
    "Source",
    "SuggestedAction",
    "UIPayload",
    "validate_payload",
    "ReactiveSession",
]
