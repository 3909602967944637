"""AI client, provider adapters, and the iteration engine."""

from .errors import AgentError, TransportError
from .orchestration import EngineConfig, IterationEngine, RunParams, RunResult, run
from .client import AIClient, ClientSettings

__all__ = [
    "AIClient",
    "ClientSettings",
    "AgentError",
    "TransportError",
    "EngineConfig",
    "IterationEngine",
    "RunParams",
    "RunResult",
    "run",
]
