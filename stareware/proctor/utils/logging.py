"""
Proctoring Logger - Logs proctoring events and results
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event.

    Args:
        session_id: Proctoring session ID
        event_type: Type of event (session_start, violation, session_end, etc.)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: str, test_id: str, candidate_id: Optional[str], time_limit: int):
    """Log session start event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_start",
        details={
            "test_id": test_id,
            "candidate_id": candidate_id or "anonymous",
            "time_limit": time_limit
        }
    )


def log_session_end(session_id: str, reason: str, score: int, violations: int):
    """Log session end event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_end",
        details={
            "reason": reason,
            "score": score,
            "violations": violations
        }
    )


def log_violation(session_id: str, reason: str, count: int, max_warnings: int):
    """Log a registered violation"""
    log_proctor_event(
        session_id=session_id,
        event_type="violation",
        details={
            "reason": f'"{reason}"',
            "count": f"{count}/{max_warnings}"
        },
        level="warning"
    )


def log_critical_event(session_id: str, event: str, details: Optional[Dict[str, Any]] = None):
    """Log a critical proctoring event"""
    log_proctor_event(
        session_id=session_id,
        event_type=f"critical_{event}",
        details=details,
        level="warning"
    )
