from .retrieval import (
    RetrievalError,
    RetrievalFilter,
    RetrievalMode,
    RetrievalResult,
    RetrievalService,
    sanitize_filter,
)

__all__ = [
    "RetrievalError",
    "RetrievalFilter",
    "RetrievalMode",
    "RetrievalResult",
    "RetrievalService",
    "sanitize_filter",
]
