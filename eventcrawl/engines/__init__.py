from .base import BaseEngine, EngineContext
from .failover import RENDER, STATIC, FailoverFetcher, FailoverState
from .http import HttpEngine, HttpEngineOptions

__all__ = [
    "BaseEngine",
    "EngineContext",
    "FailoverFetcher",
    "FailoverState",
    "HttpEngine",
    "HttpEngineOptions",
    "RENDER",
    "STATIC",
]
