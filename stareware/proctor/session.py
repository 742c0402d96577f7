"""
Proctor Session - Supervises a single timed test attempt

The session is a small state machine (NotStarted -> Running -> Completed)
driven by discrete signals: countdown ticks, face-presence samples,
visibility changes, fullscreen changes and candidate interaction. Every
handler checks the phase before mutating, so interleaved signals can
never complete a session twice.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .errors import InvalidSelectionError, InvalidStateError, InvalidTestError, PersistenceError
from .models import (
    CompletionReason,
    Notice,
    NoticeKind,
    Phase,
    QuestionType,
    Result,
    Selection,
    SessionConfig,
    SessionState,
    TestDefinition,
    ViolationEvent,
)
from .scoring import Escalation, EscalationPolicy, grade_session
from .storage import ResultSink
from .timers import Scheduler, TimerSlot
from .utils.formatting import format_time
from .utils.logging import log_critical_event, log_session_end, log_session_start, log_violation

logger = logging.getLogger(__name__)

# Violation reasons shown to the candidate
FACE_NOT_DETECTED = "Face not detected"
TAB_SWITCHING = "Tab switching detected"
FULLSCREEN_EXITED = "Fullscreen exited"
FULLSCREEN_NOT_GRANTED = "Fullscreen not granted"
PAGE_UNLOAD = "Page unload attempted"

NoticeListener = Callable[[Notice], None]
CompletionListener = Callable[[Result], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProctoringSession:
    """
    Manages a single proctored attempt.

    Owns test progress (current question, answers, time remaining) and the
    violation/escalation state. Delayed work runs through the injected
    scheduler in single-slot timers, one per concern.
    """

    def __init__(
        self,
        result_sink: ResultSink,
        scheduler: Scheduler,
        session_id: Optional[str] = None,
        candidate_id: Optional[str] = None,
        request_fullscreen: Optional[Callable[[], bool]] = None,
        clock: Callable[[], datetime] = _utcnow,
        background_persistence: bool = False,
    ):
        """
        Initialize a new proctoring session.

        Args:
            result_sink: Receives the Result once, at completion
            scheduler: Event-loop scheduler for grace, notice and auto-submit timers
            session_id: Optional custom session ID (auto-generated if not provided)
            candidate_id: ID of the candidate taking the test
            request_fullscreen: Asks the host to enter fullscreen, returns success
            clock: Wall clock for event timestamps
            background_persistence: Hand the result write to the scheduler's
                executor instead of writing on the caller's thread
        """
        self.id = session_id or f"EXM_{uuid.uuid4().hex[:6].upper()}"
        self.candidate_id = candidate_id
        self.result_sink = result_sink
        self.scheduler = scheduler
        self._request_fullscreen = request_fullscreen
        self._clock = clock
        self._background_persistence = background_persistence

        self.test: Optional[TestDefinition] = None
        self.config = SessionConfig()
        self.policy = EscalationPolicy(self.config.max_warnings)

        self._state = SessionState()
        self._result: Optional[Result] = None
        self._terminating = False
        self.persistence_error: Optional[PersistenceError] = None
        self.persistence_pending = False
        self._tick_remainder = 0.0

        # Browser surface last reported by the host
        self.is_fullscreen = False
        self.page_hidden = False

        self.active_notice: Optional[Notice] = None
        self.notices: List[Notice] = []
        self._notice_listeners: List[NoticeListener] = []
        self._completion_listeners: List[CompletionListener] = []

        self._grace_timer = TimerSlot(scheduler, "face_grace")
        self._notice_timer = TimerSlot(scheduler, "notice_dismiss")
        self._auto_submit_timer = TimerSlot(scheduler, "auto_submit")

    # ============== Read-only views ==============

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def is_running(self) -> bool:
        return self._state.phase == Phase.RUNNING

    @property
    def state(self) -> SessionState:
        """Snapshot copy of the session state"""
        return self._state.model_copy(deep=True)

    @property
    def result(self) -> Optional[Result]:
        return self._result

    @property
    def remaining_seconds(self) -> int:
        return self._state.remaining_seconds

    @property
    def violation_count(self) -> int:
        return self._state.violation_count

    @property
    def face_present(self) -> bool:
        return self._state.face_present

    @property
    def answered_count(self) -> int:
        return len(self._state.answers)

    @property
    def face_grace_pending(self) -> bool:
        return self._grace_timer.pending

    @property
    def termination_pending(self) -> bool:
        return self._terminating and self._state.phase != Phase.COMPLETED

    def add_notice_listener(self, listener: NoticeListener):
        self._notice_listeners.append(listener)

    def add_completion_listener(self, listener: CompletionListener):
        self._completion_listeners.append(listener)

    # ============== Lifecycle ==============

    def start(self, test: TestDefinition, config: Optional[SessionConfig] = None):
        """
        Start the attempt: NotStarted -> Running.

        Args:
            test: Test to attempt; held as a read-only reference
            config: Proctoring configuration (defaults if not provided)

        Raises:
            InvalidStateError: if the session was already started
            InvalidTestError: if the test has no questions
        """
        if self._state.phase != Phase.NOT_STARTED:
            raise InvalidStateError(f"Session {self.id} already started (phase={self._state.phase.value})")
        if test is None or not test.questions:
            raise InvalidTestError("Test must contain at least one question")

        self.test = test
        self.config = config or SessionConfig()
        self.policy = EscalationPolicy(self.config.max_warnings)

        now = self._clock()
        self._state.phase = Phase.RUNNING
        self._state.remaining_seconds = self.config.resolve_time_limit(test)
        self._state.current_question_index = 0
        self._state.started_at = now

        log_session_start(self.id, test.id, self.candidate_id, self._state.remaining_seconds)

        self.is_fullscreen = self._enter_fullscreen()
        if not self.is_fullscreen:
            logger.warning(f"Session {self.id}: fullscreen was not granted")
            if self.config.fullscreen_failure_is_violation:
                self.register_violation(FULLSCREEN_NOT_GRANTED)

        # Face already missing when the attempt begins
        if self.is_running and not self._state.face_present:
            self._state.last_face_loss_at = now
            self._grace_timer.arm(self.config.face_grace_seconds, self._on_face_grace_elapsed)

    def _enter_fullscreen(self) -> bool:
        if self._request_fullscreen is None:
            return True
        try:
            return bool(self._request_fullscreen())
        except Exception as e:
            logger.warning(f"Session {self.id}: fullscreen request failed: {e}")
            return False

    def tick(self, elapsed_seconds: float = 1):
        """
        Advance the countdown; completes the session when it reaches zero.

        Fractional ticks accumulate until they make up a whole second.
        No-op unless the session is running.
        """
        if isinstance(elapsed_seconds, bool) or not isinstance(elapsed_seconds, (int, float)):
            raise ValueError(f"elapsed_seconds must be a number, got {elapsed_seconds!r}")
        if elapsed_seconds < 0:
            raise ValueError("elapsed_seconds must not be negative")
        if not self.is_running:
            return

        carried = self._tick_remainder + elapsed_seconds
        whole = int(carried + 1e-9)
        self._tick_remainder = max(0.0, carried - whole)
        self._state.remaining_seconds = max(0, self._state.remaining_seconds - whole)
        if self._state.remaining_seconds == 0:
            logger.info(f"Session {self.id}: time expired")
            self.complete(CompletionReason.TIME_EXPIRED)

    # ============== Proctoring signals ==============

    def report_face_presence(self, present: bool):
        """
        Consume one face-presence sample.

        Losing the face starts the grace timer; the violation is only
        registered if the face is still absent when it elapses. Getting the
        face back cancels the pending timer.
        """
        if self._state.phase == Phase.COMPLETED:
            return

        present = bool(present)
        was_present = self._state.face_present
        self._state.face_present = present

        if not self.is_running:
            return

        if was_present and not present:
            self._state.last_face_loss_at = self._clock()
            self._grace_timer.arm(self.config.face_grace_seconds, self._on_face_grace_elapsed)
            logger.debug(f"Session {self.id}: face lost, grace {self.config.face_grace_seconds}s")
        elif present and self._grace_timer.pending:
            self._grace_timer.cancel()
            logger.debug(f"Session {self.id}: face back within grace period")

    def report_face_confidence(self, confidence: float):
        """Threshold a raw detector confidence and report presence"""
        self.report_face_presence(confidence >= self.config.face_confidence_threshold)

    def _on_face_grace_elapsed(self):
        if not self.is_running or self._state.face_present:
            return
        self.register_violation(FACE_NOT_DETECTED)

        rearm = self.config.face_absence_rearm_seconds
        if rearm and self.is_running and not self._state.face_present:
            self._grace_timer.arm(rearm, self._on_face_grace_elapsed)

    def report_visibility_change(self, hidden: bool):
        """Switching away from the test page is a violation at once"""
        if self._state.phase == Phase.COMPLETED:
            return
        self.page_hidden = bool(hidden)
        if self.page_hidden and self.is_running:
            self.register_violation(TAB_SWITCHING)

    def report_fullscreen_change(self, is_fullscreen: bool):
        """Leaving fullscreen is a violation at once"""
        if self._state.phase == Phase.COMPLETED:
            return
        self.is_fullscreen = bool(is_fullscreen)
        if not self.is_fullscreen and self.is_running:
            self.register_violation(FULLSCREEN_EXITED)

    def report_before_unload(self):
        if self.is_running:
            self.register_violation(PAGE_UNLOAD)

    # ============== Escalation ==============

    def register_violation(self, reason: str):
        """
        Record a violation and escalate.

        Below the threshold the candidate gets a warning notice; at the
        threshold a final notice is shown and the session is completed
        after the auto-submit delay. The countdown keeps running meanwhile.
        """
        if not self.is_running:
            logger.debug(f"Session {self.id}: ignoring violation '{reason}' (phase={self._state.phase.value})")
            return

        self._state.violation_count += 1
        count = self._state.violation_count
        self._state.violations.append(ViolationEvent(
            reason=reason,
            count=count,
            occurred_at=self._clock(),
            remaining_seconds=self._state.remaining_seconds,
        ))
        log_violation(self.id, reason, count, self.policy.max_warnings)

        if self._terminating:
            return

        if self.policy.evaluate(count) == Escalation.TERMINATE:
            self._terminating = True
            self._issue_notice(NoticeKind.FINAL, reason, requires_acknowledgment=False)
            log_critical_event(self.id, "auto_submit", {"violations": count, "last_reason": f'"{reason}"'})

            delay = self.config.auto_submit_delay_seconds
            if delay > 0:
                self._auto_submit_timer.arm(delay, self._on_auto_submit)
            else:
                self.complete(CompletionReason.POLICY_VIOLATION)
            return

        notice = self._issue_notice(
            NoticeKind.WARNING, reason,
            requires_acknowledgment=self.config.require_acknowledgment,
        )
        if not notice.requires_acknowledgment:
            self._notice_timer.arm(self.config.notice_dismiss_seconds, lambda: self._dismiss_notice(notice))

    def _on_auto_submit(self):
        self.complete(CompletionReason.POLICY_VIOLATION)

    def _issue_notice(self, kind: NoticeKind, reason: str, requires_acknowledgment: bool) -> Notice:
        if self.active_notice is not None:
            self.active_notice.dismissed = True
        self._notice_timer.cancel()

        notice = Notice(
            kind=kind,
            reason=reason,
            violation_count=self._state.violation_count,
            max_warnings=self.policy.max_warnings,
            requires_acknowledgment=requires_acknowledgment,
            issued_at=self._clock(),
        )
        self.active_notice = notice
        self.notices.append(notice)

        for listener in self._notice_listeners:
            try:
                listener(notice)
            except Exception:
                logger.exception(f"Session {self.id}: notice listener failed")
        return notice

    def _dismiss_notice(self, notice: Notice):
        notice.dismissed = True
        if self.active_notice is notice:
            self.active_notice = None

    def acknowledge_notice(self) -> bool:
        """
        Dismiss the active warning.

        The final notice preceding forced completion cannot be dismissed.
        """
        notice = self.active_notice
        if notice is None or notice.kind == NoticeKind.FINAL:
            return False
        self._notice_timer.cancel()
        self._dismiss_notice(notice)
        return True

    # ============== Answers & navigation ==============

    def _check_running(self, operation: str) -> bool:
        if self.is_running:
            return True
        if self.config.strict_mode:
            raise InvalidStateError(f"Cannot {operation} while session is {self._state.phase.value}")
        logger.debug(f"Session {self.id}: ignoring {operation} (phase={self._state.phase.value})")
        return False

    def _check_question_index(self, question_index: int):
        total = len(self.test.questions)
        if isinstance(question_index, bool) or not 0 <= question_index < total:
            raise InvalidSelectionError(f"Question index {question_index} out of range (0..{total - 1})")

    def select_answer(self, question_index: int, selection: Union[None, int, Iterable[int]]):
        """
        Record or overwrite the answer to a question.

        ``None`` or an empty selection clears the answer. Does not move to
        another question.
        """
        if not self._check_running("select answer"):
            return
        self._check_question_index(question_index)

        normalized = self._normalize_selection(question_index, selection)
        if normalized is None:
            self._state.answers.pop(question_index, None)
        else:
            self._state.answers[question_index] = normalized

    def _normalize_selection(self, question_index: int, selection) -> Optional[Selection]:
        if selection is None:
            return None

        question = self.test.questions[question_index]
        if isinstance(selection, bool) or isinstance(selection, (str, bytes, float)):
            raise InvalidSelectionError(f"Invalid selection {selection!r}")
        if isinstance(selection, int):
            indices = [selection]
        else:
            try:
                indices = list(selection)
            except TypeError:
                raise InvalidSelectionError(f"Invalid selection {selection!r}")
        if not indices:
            return None

        n_options = len(question.options)
        for i in indices:
            if isinstance(i, bool) or not isinstance(i, int) or not 0 <= i < n_options:
                raise InvalidSelectionError(
                    f"Option index {i!r} out of range for question {question_index} (0..{n_options - 1})"
                )

        if question.type == QuestionType.SINGLE:
            if len(set(indices)) != 1:
                raise InvalidSelectionError(f"Question {question_index} accepts a single option")
            return indices[0]
        return sorted(set(indices))

    def navigate_to(self, question_index: int):
        """Jump to any question; navigation is unrestricted"""
        if not self._check_running("navigate"):
            return
        self._check_question_index(question_index)
        self._state.current_question_index = question_index

    def next_question(self):
        if self.test is not None:
            self.navigate_to(min(self._state.current_question_index + 1, len(self.test.questions) - 1))

    def previous_question(self):
        if self.test is not None:
            self.navigate_to(max(self._state.current_question_index - 1, 0))

    # ============== Completion ==============

    def submit(self) -> Optional[Result]:
        """Manual submit by the candidate"""
        return self.complete(CompletionReason.MANUAL_SUBMIT)

    def complete(self, reason: CompletionReason = CompletionReason.MANUAL_SUBMIT) -> Optional[Result]:
        """
        Complete the attempt: Running -> Completed, exactly once.

        Later calls return the existing Result without side effects. The
        Result is handed to the result sink once; a sink failure is
        recorded in ``persistence_error`` and never reverts the transition.
        """
        if self._state.phase == Phase.COMPLETED:
            return self._result
        if self._state.phase == Phase.NOT_STARTED:
            if self.config.strict_mode:
                raise InvalidStateError(f"Session {self.id} has not started")
            logger.debug(f"Session {self.id}: ignoring complete before start")
            return None

        completed_at = self._clock()
        self._state.phase = Phase.COMPLETED
        self._state.completed_at = completed_at
        self._state.completion_reason = reason

        self._grace_timer.cancel()
        self._notice_timer.cancel()
        self._auto_submit_timer.cancel()
        if self.active_notice is not None and self.active_notice.kind == NoticeKind.WARNING:
            self._dismiss_notice(self.active_notice)

        self._result = grade_session(
            session_id=self.id,
            test=self.test,
            state=self._state,
            reason=reason,
            completed_at=completed_at,
            candidate_id=self.candidate_id,
        )
        log_session_end(self.id, reason.value, self._result.score, self._state.violation_count)

        self._persist(self._result)

        for listener in self._completion_listeners:
            try:
                listener(self._result)
            except Exception:
                logger.exception(f"Session {self.id}: completion listener failed")

        return self._result

    def _persist(self, result: Result):
        if self._background_persistence:
            self.persistence_pending = True
            future = self.scheduler.run_in_background(self.result_sink.submit_result, result)
            future.add_done_callback(self._on_persisted)
            return

        try:
            self.result_sink.submit_result(result)
        except Exception as e:
            self._record_persistence_error(e)

    def _on_persisted(self, future):
        self.persistence_pending = False
        if future.cancelled():
            self._record_persistence_error(PersistenceError("Result write was cancelled"))
            return
        error = future.exception()
        if error is not None:
            self._record_persistence_error(error)

    def _record_persistence_error(self, error: BaseException):
        if isinstance(error, PersistenceError):
            self.persistence_error = error
            logger.error(f"Session {self.id}: failed to persist result: {error}")
        else:
            self.persistence_error = PersistenceError(str(error))
            logger.error(f"Session {self.id}: result sink raised unexpectedly: {error!r}", exc_info=error)

    # ============== Status ==============

    def question_view(self, question_index: int) -> Dict[str, Any]:
        """Question as shown to the candidate, without correctness"""
        if self.test is None:
            raise InvalidStateError(f"Session {self.id} has not started")
        self._check_question_index(question_index)

        question = self.test.questions[question_index]
        return {
            "index": question_index,
            "total": len(self.test.questions),
            "id": question.id,
            "text": question.text,
            "type": question.type.value,
            "marks": question.marks,
            "options": [{"id": opt.id, "text": opt.text} for opt in question.options],
            "saved_answer": self._state.answers.get(question_index),
        }

    def status(self) -> Dict[str, Any]:
        """Current progress and proctoring status"""
        notice = self.active_notice
        return {
            "session_id": self.id,
            "test_id": self.test.id if self.test else None,
            "phase": self._state.phase.value,
            "current_question_index": self._state.current_question_index,
            "total_questions": len(self.test.questions) if self.test else 0,
            "answered_count": self.answered_count,
            "answered_questions": sorted(self._state.answers),
            "remaining_seconds": self._state.remaining_seconds,
            "remaining_display": format_time(self._state.remaining_seconds),
            "face_present": self._state.face_present,
            "violation_count": self._state.violation_count,
            "max_warnings": self.policy.max_warnings,
            "notice": {
                "kind": notice.kind.value,
                "reason": notice.reason,
                "message": notice.message,
                "violation_count": notice.violation_count,
                "requires_acknowledgment": notice.requires_acknowledgment,
            } if notice else None,
            "completion_reason": self._state.completion_reason.value if self._state.completion_reason else None,
            "persistence_pending": self.persistence_pending,
            "persistence_error": str(self.persistence_error) if self.persistence_error else None,
        }
