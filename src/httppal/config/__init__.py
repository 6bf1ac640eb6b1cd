from __future__ import annotations

from httppal.config.models import (
    EngineSettings,
    ExecutionParameters,
    HttpMethod,
    RequestDescriptor,
)

__all__ = [
    "EngineSettings",
    "ExecutionParameters",
    "HttpMethod",
    "RequestDescriptor",
]
