"""
StareWare Proctoring Module

Supervises a timed multiple-choice attempt and enforces exam integrity by
reacting to:
- Face absence (after a short grace period)
- Tab switching
- Leaving fullscreen
- Page unload attempts

Each violation produces a warning; reaching the threshold auto-submits the
attempt. The final Result carries the score and the violation log.
"""

from .api import router
from .errors import (
    InvalidSelectionError,
    InvalidStateError,
    InvalidTestError,
    PersistenceError,
    ProctoringError,
    TestNotFoundError,
    TestNotLiveError,
)
from .models import CompletionReason, Phase, Result, SessionConfig, TestDefinition
from .registry import SessionRegistry
from .session import ProctoringSession

__all__ = [
    "router",
    "ProctoringSession",
    "SessionRegistry",
    "SessionConfig",
    "TestDefinition",
    "Result",
    "Phase",
    "CompletionReason",
    "ProctoringError",
    "InvalidTestError",
    "TestNotFoundError",
    "TestNotLiveError",
    "InvalidStateError",
    "InvalidSelectionError",
    "PersistenceError",
]
