"""
Pytest Configuration for Proctoring Service Tests
"""
from concurrent.futures import Future

import pytest
from fastapi.testclient import TestClient

from stareware.config import Settings
from stareware.proctor.models import Option, Question, QuestionType, SessionConfig, TestDefinition, TestStatus
from stareware.proctor.registry import SessionRegistry
from stareware.proctor.session import ProctoringSession
from stareware.proctor.storage import InMemoryResultSink, InMemoryTestRepository


class ManualHandle:
    def __init__(self, when, seq, callback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler on a virtual clock; callbacks and background jobs only run on ``advance``"""

    def __init__(self):
        self.now = 0.0
        self._seq = 0
        self._handles = []
        self._jobs = []

    def time(self):
        return self.now

    def call_later(self, delay, callback):
        handle = ManualHandle(self.now + delay, self._seq, callback)
        self._seq += 1
        self._handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds):
        """Move the clock forward, firing due callbacks in order"""
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target
        self.run_background()

    def run_in_background(self, func, *args):
        """Queue blocking work; it runs on the next ``advance``"""
        future = Future()
        self._jobs.append((future, func, args))
        return future

    def run_background(self):
        while self._jobs:
            future, func, args = self._jobs.pop(0)
            try:
                future.set_result(func(*args))
            except Exception as e:
                future.set_exception(e)


def make_question(qid, correct, n_options=4, qtype=QuestionType.SINGLE, marks=1):
    """Question whose options at the ``correct`` indices are marked correct"""
    correct = {correct} if isinstance(correct, int) else set(correct)
    return Question(
        id=qid,
        text=f"Question {qid}?",
        type=qtype,
        marks=marks,
        options=tuple(
            Option(id=f"{qid}_opt{i + 1}", text=f"Option {i + 1}", is_correct=i in correct)
            for i in range(n_options)
        ),
    )


def make_test(questions=None, test_id="test-1", status=TestStatus.LIVE, time_limit_seconds=600):
    if questions is None:
        questions = [
            make_question("q1", 1),
            make_question("q2", [0, 2], qtype=QuestionType.MULTIPLE, marks=2),
            make_question("q3", 0, n_options=2),
        ]
    return TestDefinition(
        id=test_id,
        title="Sample Test",
        status=status,
        time_limit_seconds=time_limit_seconds,
        questions=tuple(questions),
    )


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def result_sink():
    return InMemoryResultSink()


@pytest.fixture
def sample_test():
    """Live test: single (correct 1), multiple (correct 0 and 2), single (correct 0)"""
    return make_test()


@pytest.fixture
def session(result_sink, scheduler):
    """Proctoring session that has not started yet"""
    return ProctoringSession(result_sink=result_sink, scheduler=scheduler, session_id="EXM_TEST01")


@pytest.fixture
def running_session(session, sample_test):
    """Session started on the sample test with default configuration"""
    session.start(sample_test, SessionConfig())
    return session


@pytest.fixture
def registry(sample_test, result_sink, scheduler):
    repository = InMemoryTestRepository([
        sample_test,
        make_test(test_id="draft-1", status=TestStatus.DRAFT),
    ])
    return SessionRegistry(
        repository=repository,
        result_sink=result_sink,
        settings=Settings(AUTO_TICK=False, SESSION_RETENTION_SECONDS=60.0, BACKGROUND_PERSISTENCE=True),
        scheduler_factory=lambda: scheduler,
    )


@pytest.fixture
def client(registry):
    """FastAPI test client serving the in-memory registry"""
    from stareware.main import app
    from stareware.proctor.api import get_registry

    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()
