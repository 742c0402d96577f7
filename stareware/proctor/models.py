"""
Proctoring Models - Test documents, session state and results

TestDefinition and Question are frozen once loaded; a session only holds a
read-only reference. SessionState is mutated exclusively by the session
controller. Result is derived once, at completion.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MIN_OPTIONS = 2
MAX_OPTIONS = 6

# Single-select answers are one option index, multi-select answers a list
Selection = Union[int, List[int]]


# ============== Enums ==============

class TestStatus(str, Enum):
    """Dashboard lifecycle of a test"""
    __test__ = False

    DRAFT = "draft"
    PUBLISHED = "published"
    LIVE = "live"
    CLOSED = "closed"


class QuestionType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"


class Phase(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"


class CompletionReason(str, Enum):
    MANUAL_SUBMIT = "manual_submit"
    TIME_EXPIRED = "time_expired"
    POLICY_VIOLATION = "policy_violation"


class NoticeKind(str, Enum):
    WARNING = "warning"
    FINAL = "final"


# ============== Test Documents ==============

class Option(BaseModel):
    """One answer option of a multiple-choice question"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Option identifier")
    text: str = Field(..., description="Option text shown to the candidate")
    is_correct: bool = Field(False, alias="isCorrect")

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("All options must have text.")
        return v


class Question(BaseModel):
    """
    Multiple-choice question.

    The set of correct options is taken from the options' ``is_correct``
    flags. Single-select questions have exactly one correct option.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    text: str = Field(..., description="Question text")
    type: QuestionType = QuestionType.SINGLE
    options: Tuple[Option, ...]
    marks: int = Field(1, ge=1, description="Marks awarded for a correct answer")
    explanation: Optional[str] = None

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Question text is required.")
        return v

    @field_validator("options")
    @classmethod
    def validate_options_length(cls, v: Tuple[Option, ...]) -> Tuple[Option, ...]:
        if len(v) < MIN_OPTIONS:
            raise ValueError(f"At least {MIN_OPTIONS} options are required.")
        if len(v) > MAX_OPTIONS:
            raise ValueError(f"No more than {MAX_OPTIONS} options allowed.")
        return v

    @model_validator(mode="after")
    def validate_correct_options(self) -> "Question":
        correct = sum(1 for opt in self.options if opt.is_correct)
        if correct == 0:
            raise ValueError("Mark at least one correct answer.")
        if self.type == QuestionType.SINGLE and correct > 1:
            raise ValueError("Single-select questions must have exactly one correct answer.")
        return self

    @property
    def correct_indices(self) -> FrozenSet[int]:
        return frozenset(i for i, opt in enumerate(self.options) if opt.is_correct)

    @property
    def correct_index(self) -> Optional[int]:
        """Correct option index for single-select questions"""
        if self.type != QuestionType.SINGLE:
            return None
        return min(self.correct_indices)

    def is_answered_correctly(self, selection: Optional[Selection]) -> bool:
        """
        Compare a recorded selection with the options marked correct.

        Single-select: exact index equality.
        Multi-select: set equality with the options marked correct.
        """
        if selection is None:
            return False
        if self.type == QuestionType.SINGLE:
            if isinstance(selection, list):
                return len(selection) == 1 and selection[0] == self.correct_index
            return selection == self.correct_index
        selected = {selection} if isinstance(selection, int) else set(selection)
        return selected == set(self.correct_indices)


class TestDefinition(BaseModel):
    """A test fetched by id from the test repository"""
    __test__ = False
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str = "Untitled Test"
    description: Optional[str] = None
    status: TestStatus = TestStatus.DRAFT
    time_limit_seconds: Optional[int] = Field(None, ge=1, alias="timeLimitSeconds")
    questions: Tuple[Question, ...] = ()

    @property
    def total_marks(self) -> int:
        return sum(q.marks for q in self.questions)


# ============== Session ==============

class SessionConfig(BaseModel):
    """
    Per-session proctoring configuration.

    Built from application settings with ``from_settings``; callers can
    override individual fields per session.
    """

    time_limit_seconds: Optional[int] = Field(None, ge=1)
    face_grace_seconds: float = Field(5.0, ge=0)
    max_warnings: int = Field(3, ge=1)
    notice_dismiss_seconds: float = Field(2.0, ge=0)
    auto_submit_delay_seconds: float = Field(2.0, ge=0)
    require_acknowledgment: bool = False
    strict_mode: bool = False
    face_confidence_threshold: float = Field(0.5, ge=0, le=1)
    fullscreen_failure_is_violation: bool = False
    face_absence_rearm_seconds: Optional[float] = Field(None, gt=0)
    default_time_limit_seconds: int = Field(3600, ge=1)

    @classmethod
    def from_settings(cls, settings, **overrides) -> "SessionConfig":
        values = {
            "face_grace_seconds": settings.FACE_GRACE_SECONDS,
            "max_warnings": settings.MAX_WARNINGS,
            "notice_dismiss_seconds": settings.NOTICE_DISMISS_SECONDS,
            "auto_submit_delay_seconds": settings.AUTO_SUBMIT_DELAY_SECONDS,
            "require_acknowledgment": settings.REQUIRE_ACKNOWLEDGMENT,
            "strict_mode": settings.STRICT_MODE,
            "face_confidence_threshold": settings.FACE_CONFIDENCE_THRESHOLD,
            "fullscreen_failure_is_violation": settings.FULLSCREEN_FAILURE_IS_VIOLATION,
            "face_absence_rearm_seconds": settings.FACE_ABSENCE_REARM_SECONDS,
            "default_time_limit_seconds": settings.DEFAULT_TIME_LIMIT_SECONDS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def resolve_time_limit(self, test: TestDefinition) -> int:
        return self.time_limit_seconds or test.time_limit_seconds or self.default_time_limit_seconds


class ViolationEvent(BaseModel):
    """A registered integrity violation"""
    model_config = ConfigDict(frozen=True)

    reason: str
    count: int
    occurred_at: datetime
    remaining_seconds: int


class Notice(BaseModel):
    """User-visible notice raised by the escalation policy"""

    kind: NoticeKind
    reason: str
    violation_count: int
    max_warnings: int
    requires_acknowledgment: bool
    issued_at: datetime
    dismissed: bool = False

    @property
    def message(self) -> str:
        if self.kind == NoticeKind.FINAL:
            return "Test auto-submitted due to multiple violations"
        return (
            f"WARNING: {self.reason}. This is warning {self.violation_count} of "
            f"{self.max_warnings}. Test will auto-submit after {self.max_warnings} warnings."
        )


class SessionState(BaseModel):
    """Mutable progress and violation state of one attempt"""

    current_question_index: int = Field(0, ge=0)
    answers: Dict[int, Selection] = Field(default_factory=dict)
    remaining_seconds: int = Field(0, ge=0)
    phase: Phase = Phase.NOT_STARTED
    face_present: bool = True
    violation_count: int = Field(0, ge=0)
    last_face_loss_at: Optional[datetime] = None
    violations: List[ViolationEvent] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completion_reason: Optional[CompletionReason] = None


# ============== Results ==============

class QuestionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_index: int
    question_id: str
    selected: Optional[Selection] = None
    correct: bool
    marks_awarded: int


class Result(BaseModel):
    """Write-once outcome of a completed attempt"""
    model_config = ConfigDict(frozen=True)

    session_id: str
    test_id: str
    test_title: str
    candidate_id: Optional[str] = None
    reason: CompletionReason
    score: int = Field(..., ge=0, le=100)
    correct_count: int
    total_questions: int
    answered_count: int
    skipped_count: int
    marks_obtained: int
    total_marks: int
    per_question_answers: List[QuestionOutcome]
    violation_count: int
    violations: List[ViolationEvent] = Field(default_factory=list)
    completed_at: datetime
