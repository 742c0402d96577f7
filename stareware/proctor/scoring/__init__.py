"""Scoring modules"""

from .grader import grade_session, score_percentage
from .escalation import Escalation, EscalationPolicy

__all__ = ["grade_session", "score_percentage", "Escalation", "EscalationPolicy"]
