"""Utility modules"""

from .formatting import format_time
from .logging import log_proctor_event

__all__ = ["format_time", "log_proctor_event"]
