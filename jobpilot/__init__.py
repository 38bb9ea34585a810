"""Job application workflow engine: discover, score, navigate, apply, audit."""
from __future__ import annotations

__version__ = "0.3.0"

from jobpilot.config import WorkflowConfig, load_profile, load_settings
from jobpilot.errors import (
    ConfigError,
    JobPilotError,
    JobTerminalError,
    RetryableError,
    SessionTerminalError,
    StorageError,
    WorkflowCancelled,
)
from jobpilot.matcher import MatchEngine
from jobpilot.orchestrator import WorkflowOrchestrator
from jobpilot.rate_limiter import RateLimiter
from jobpilot.retry import RetryExecutor
from jobpilot.session_store import SessionStore

__all__ = [
    "ConfigError",
    "JobPilotError",
    "JobTerminalError",
    "MatchEngine",
    "RateLimiter",
    "RetryExecutor",
    "RetryableError",
    "SessionStore",
    "SessionTerminalError",
    "StorageError",
    "WorkflowCancelled",
    "WorkflowConfig",
    "WorkflowOrchestrator",
    "load_profile",
    "load_settings",
]
