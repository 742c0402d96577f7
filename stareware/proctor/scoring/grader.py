"""
Grader - Derives the final Result of an attempt from its session state
"""

import logging
from datetime import datetime
from typing import Optional

from ..models import (
    CompletionReason,
    QuestionOutcome,
    Result,
    SessionState,
    TestDefinition,
)

logger = logging.getLogger(__name__)


def score_percentage(correct_count: int, total_questions: int) -> int:
    """round(100 * correct / total); 0 for an empty test"""
    if total_questions <= 0:
        return 0
    return int(round(100 * correct_count / total_questions))


def grade_session(
    session_id: str,
    test: TestDefinition,
    state: SessionState,
    reason: CompletionReason,
    completed_at: datetime,
    candidate_id: Optional[str] = None,
) -> Result:
    """
    Grade every question of the test against the recorded answers.

    Unanswered questions count as incorrect. Marks are awarded in full for
    a correct answer and not at all otherwise.

    Args:
        session_id: Session being completed
        test: The attempted test
        state: Session state at completion
        reason: Why the session completed
        completed_at: Completion timestamp

    Returns:
        Write-once Result
    """
    outcomes = []
    correct_count = 0
    marks_obtained = 0

    for index, question in enumerate(test.questions):
        selected = state.answers.get(index)
        correct = question.is_answered_correctly(selected)
        awarded = question.marks if correct else 0
        if correct:
            correct_count += 1
            marks_obtained += awarded
        outcomes.append(QuestionOutcome(
            question_index=index,
            question_id=question.id,
            selected=selected,
            correct=correct,
            marks_awarded=awarded,
        ))

    total = len(test.questions)
    answered = sum(1 for index in range(total) if index in state.answers)
    score = score_percentage(correct_count, total)

    logger.debug(f"Graded session {session_id}: {correct_count}/{total} correct, score={score}")

    return Result(
        session_id=session_id,
        test_id=test.id,
        test_title=test.title,
        candidate_id=candidate_id,
        reason=reason,
        score=score,
        correct_count=correct_count,
        total_questions=total,
        answered_count=answered,
        skipped_count=total - answered,
        marks_obtained=marks_obtained,
        total_marks=test.total_marks,
        per_question_answers=outcomes,
        violation_count=state.violation_count,
        violations=list(state.violations),
        completed_at=completed_at,
    )
