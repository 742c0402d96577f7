"""
Tests for Scoring and Escalation
"""

import pytest
from datetime import datetime, timezone

from stareware.proctor.models import CompletionReason, Option, Question, QuestionType, SessionState
from stareware.proctor.scoring import Escalation, EscalationPolicy, grade_session, score_percentage
from stareware.proctor.session import ProctoringSession

from conftest import make_question, make_test


class TestScorePercentage:
    """Tests for score_percentage"""

    @pytest.mark.parametrize("correct,total,expected", [
        (0, 3, 0),
        (1, 3, 33),
        (2, 3, 67),
        (3, 3, 100),
        (1, 2, 50),
        (0, 0, 0),
    ])
    def test_rounding(self, correct, total, expected):
        assert score_percentage(correct, total) == expected


class TestQuestionCorrectness:
    """Tests for Question.is_answered_correctly"""

    def test_single_select_exact_index(self):
        question = make_question("q1", 2)

        assert question.is_answered_correctly(2)
        assert question.is_answered_correctly([2])
        assert not question.is_answered_correctly(1)
        assert not question.is_answered_correctly(None)

    def test_multi_select_set_equality(self):
        question = make_question("q1", [0, 2], qtype=QuestionType.MULTIPLE)

        assert question.is_answered_correctly([2, 0])
        assert not question.is_answered_correctly([0])
        assert not question.is_answered_correctly([0, 1, 2])

    def test_multi_select_with_one_correct(self):
        question = make_question("q1", [3], qtype=QuestionType.MULTIPLE)

        assert question.is_answered_correctly(3)
        assert question.is_answered_correctly([3])

    def test_single_select_rejects_two_correct(self):
        with pytest.raises(ValueError):
            Question(
                id="q1",
                text="Pick one",
                options=(
                    Option(id="a", text="A", is_correct=True),
                    Option(id="b", text="B", is_correct=True),
                ),
            )


class TestGradeSession:
    """Tests for grade_session"""

    def _grade(self, test, answers):
        state = SessionState(answers=answers, violation_count=1)
        return grade_session(
            session_id="EXM_ABC123",
            test=test,
            state=state,
            reason=CompletionReason.MANUAL_SUBMIT,
            completed_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            candidate_id="student-7",
        )

    def test_unanswered_questions_are_incorrect(self, sample_test):
        result = self._grade(sample_test, {})

        assert result.score == 0
        assert result.correct_count == 0
        assert result.skipped_count == 3
        assert all(not o.correct for o in result.per_question_answers)

    def test_marks_and_outcomes(self, sample_test):
        result = self._grade(sample_test, {0: 1, 1: [0, 1], 2: 0})

        assert result.correct_count == 2
        assert result.marks_obtained == 2
        assert result.total_marks == 4
        assert [o.marks_awarded for o in result.per_question_answers] == [1, 0, 1]
        assert result.per_question_answers[1].selected == [0, 1]
        assert result.candidate_id == "student-7"
        assert result.violation_count == 1


class TestScoringScenario:
    """Two single-select questions with correct indices [1, 0]"""

    @pytest.fixture
    def two_question_test(self):
        return make_test([make_question("q1", 1), make_question("q2", 0)])

    @pytest.mark.parametrize("answers,expected", [
        ([1, 0], 100),
        ([0, 0], 50),
        ([0, 1], 0),
    ])
    def test_score(self, result_sink, scheduler, two_question_test, answers, expected):
        session = ProctoringSession(result_sink, scheduler)
        session.start(two_question_test)
        for index, choice in enumerate(answers):
            session.select_answer(index, choice)

        result = session.submit()

        assert result.score == expected


class TestEscalationPolicy:
    """Tests for EscalationPolicy"""

    def test_default_threshold(self):
        policy = EscalationPolicy()

        assert policy.max_warnings == 3
        assert policy.evaluate(1) == Escalation.WARN
        assert policy.evaluate(2) == Escalation.WARN
        assert policy.evaluate(3) == Escalation.TERMINATE
        assert policy.evaluate(4) == Escalation.TERMINATE

    def test_custom_threshold(self):
        policy = EscalationPolicy(max_warnings=1)
        assert policy.evaluate(1) == Escalation.TERMINATE

    def test_warnings_left(self):
        policy = EscalationPolicy()
        assert policy.warnings_left(1) == 2
        assert policy.warnings_left(5) == 0
