"""
Session Registry - Live proctoring sessions served by the API

One ProctoringSession per attempt. Completed sessions stay readable for
``SESSION_RETENTION_SECONDS`` so the client can fetch the result, then
they are dropped. A session the client abandons is expired as timed out
once its time limit plus the retention window has passed.
"""

import logging
from typing import Callable, Dict, List, Optional

from ..config import Settings
from .models import CompletionReason, SessionConfig
from .session import ProctoringSession
from .storage import ResultSink, TestRepository
from .timers import AsyncioScheduler, Scheduler, Ticker, TimerSlot

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Creates, tracks and cleans up proctoring sessions.

    Collaborators are injected so the API never reaches for module-level
    state: the test repository, the result sink and a scheduler factory.
    """

    def __init__(
        self,
        repository: TestRepository,
        result_sink: ResultSink,
        settings: Settings,
        scheduler_factory: Callable[[], Scheduler] = AsyncioScheduler,
    ):
        self.repository = repository
        self.result_sink = result_sink
        self.settings = settings
        self._scheduler_factory = scheduler_factory
        self._sessions: Dict[str, ProctoringSession] = {}
        self._tickers: Dict[str, Ticker] = {}
        self._deadlines: Dict[str, TimerSlot] = {}

    def create_session(
        self,
        test_id: str,
        candidate_id: Optional[str] = None,
        fullscreen_granted: bool = True,
        **overrides,
    ) -> ProctoringSession:
        """
        Fetch a live test and start a proctored attempt on it.

        Args:
            test_id: Test to attempt
            candidate_id: Candidate taking the test
            fullscreen_granted: Whether the browser obtained fullscreen
            **overrides: SessionConfig fields overriding the settings defaults

        Raises:
            TestNotFoundError, TestNotLiveError, InvalidTestError
        """
        test = self.repository.fetch_attemptable_test(test_id)
        config = SessionConfig.from_settings(self.settings, **overrides)

        scheduler = self._scheduler_factory()
        session = ProctoringSession(
            result_sink=self.result_sink,
            scheduler=scheduler,
            candidate_id=candidate_id,
            request_fullscreen=lambda: fullscreen_granted,
            background_persistence=self.settings.BACKGROUND_PERSISTENCE,
        )
        session.add_completion_listener(lambda result: self._on_session_complete(session))
        session.start(test, config)
        self._sessions[session.id] = session

        if session.is_running:
            deadline = TimerSlot(scheduler, "deadline")
            deadline.arm(
                session.remaining_seconds + self.settings.SESSION_RETENTION_SECONDS,
                lambda: self._on_deadline(session),
            )
            self._deadlines[session.id] = deadline

        if self.settings.AUTO_TICK and session.is_running:
            ticker = Ticker(scheduler, lambda: self._auto_tick(session))
            self._tickers[session.id] = ticker
            ticker.start()

        logger.info(f"Started proctoring session: {session.id} (test={test_id})")
        return session

    def get(self, session_id: str) -> Optional[ProctoringSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str):
        self._stop_timers(session_id)
        if self._sessions.pop(session_id, None) is not None:
            logger.info(f"Cleaned up session: {session_id}")

    def active_sessions(self) -> List[ProctoringSession]:
        return [s for s in self._sessions.values() if s.is_running]

    def __len__(self) -> int:
        return len(self._sessions)

    def close(self):
        """Stop all tickers and deadlines; used on application shutdown"""
        for session_id in list(self._sessions):
            self._stop_timers(session_id)

    @staticmethod
    def _auto_tick(session: ProctoringSession) -> bool:
        session.tick(1)
        return session.is_running

    def _stop_timers(self, session_id: str):
        ticker = self._tickers.pop(session_id, None)
        if ticker is not None:
            ticker.stop()
        deadline = self._deadlines.pop(session_id, None)
        if deadline is not None:
            deadline.cancel()

    def _on_deadline(self, session: ProctoringSession):
        self._deadlines.pop(session.id, None)
        if session.is_running:
            logger.warning(f"Session {session.id} passed its deadline without completing, expiring it")
            session.complete(CompletionReason.TIME_EXPIRED)

    def _on_session_complete(self, session: ProctoringSession):
        self._stop_timers(session.id)
        session.scheduler.call_later(
            self.settings.SESSION_RETENTION_SECONDS,
            lambda: self.remove(session.id),
        )
