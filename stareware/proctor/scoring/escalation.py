"""
Escalation Policy - Decides how a registered violation is surfaced
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class Escalation(str, Enum):
    WARN = "warn"
    TERMINATE = "terminate"


class EscalationPolicy:
    """
    Warn on each violation until the escalation threshold is reached,
    then terminate the attempt.
    """

    # Violations that force completion
    MAX_WARNINGS = 3

    def __init__(self, max_warnings: Optional[int] = None):
        """
        Args:
            max_warnings: Optional override of the escalation threshold
        """
        self.max_warnings = max_warnings or self.MAX_WARNINGS

    def evaluate(self, violation_count: int) -> Escalation:
        if violation_count >= self.max_warnings:
            logger.info(f"Escalation threshold reached ({violation_count} >= {self.max_warnings})")
            return Escalation.TERMINATE
        return Escalation.WARN

    def warnings_left(self, violation_count: int) -> int:
        return max(0, self.max_warnings - violation_count)
