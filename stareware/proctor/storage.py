"""
Proctoring Storage - Test repository and result sinks

The session controller never touches storage directly: a TestRepository is
used by the caller to fetch the test before the session starts, and a
ResultSink is injected into the session to receive the final Result.

JSON-file implementations mirror the browser's local ``mcq_tests`` and
``test_results`` stores and double as the local fallback for a remote sink.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .documents import normalize_test_document
from .errors import InvalidTestError, PersistenceError, TestNotFoundError, TestNotLiveError
from .models import Result, TestDefinition, TestStatus

logger = logging.getLogger(__name__)


# ============================================================================
# Test Repository
# ============================================================================

class TestRepository(ABC):
    """Read access to test documents"""

    __test__ = False

    @abstractmethod
    def fetch_test_by_id(self, test_id: str) -> TestDefinition:
        """
        Fetch a test by id.

        Raises:
            TestNotFoundError: if no such test exists
            InvalidTestError: if the stored document is malformed
        """

    def fetch_attemptable_test(self, test_id: str) -> TestDefinition:
        """Fetch a test that candidates may attempt right now (status ``live``)"""
        test = self.fetch_test_by_id(test_id)
        if test.status != TestStatus.LIVE:
            raise TestNotLiveError(test_id, test.status.value)
        return test


class InMemoryTestRepository(TestRepository):
    """Test repository held in memory"""

    def __init__(self, tests: Iterable[TestDefinition] = ()):
        self._tests: Dict[str, TestDefinition] = {t.id: t for t in tests}

    def add(self, test: TestDefinition):
        self._tests[test.id] = test

    def fetch_test_by_id(self, test_id: str) -> TestDefinition:
        test = self._tests.get(test_id)
        if test is None:
            raise TestNotFoundError(test_id)
        return test


class JsonFileTestRepository(TestRepository):
    """
    Test repository backed by JSON documents on disk.

    ``path`` is either a directory holding one ``<id>.json`` document per
    test, or a single file holding a JSON array of documents. Documents are
    re-read on every fetch so edits made by the dashboard are picked up.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def fetch_test_by_id(self, test_id: str) -> TestDefinition:
        doc = self._load_document(test_id)
        if doc is None:
            raise TestNotFoundError(test_id)
        return normalize_test_document(doc, test_id=test_id)

    def list_test_ids(self) -> List[str]:
        if self.path.is_dir():
            return sorted(p.stem for p in self.path.glob("*.json"))
        return [str(doc.get("id")) for doc in self._load_array() if doc.get("id")]

    def _load_document(self, test_id: str) -> Optional[dict]:
        if self.path.is_dir():
            doc_path = self.path / f"{test_id}.json"
            # Ids come from clients; only documents directly inside the store
            if doc_path.resolve().parent != self.path.resolve():
                logger.warning(f"Rejected test id outside the store: {test_id!r}")
                return None
            if not doc_path.is_file():
                return None
            return self._read_json(doc_path)

        for doc in self._load_array():
            if str(doc.get("id")) == test_id:
                return doc
        return None

    def _load_array(self) -> List[dict]:
        if not self.path.is_file():
            return []
        docs = self._read_json(self.path)
        if not isinstance(docs, list):
            raise InvalidTestError(f"{self.path} must contain a JSON array of tests")
        return [d for d in docs if isinstance(d, dict)]

    @staticmethod
    def _read_json(path: Path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise InvalidTestError(f"Unreadable test document {path}: {e}") from e


# ============================================================================
# Result Sinks
# ============================================================================

class ResultSink(ABC):
    """Write sink for completed attempts"""

    @abstractmethod
    def submit_result(self, result: Result) -> None:
        """
        Persist a completed attempt.

        Raises:
            PersistenceError: if the result could not be written
        """


class InMemoryResultSink(ResultSink):
    """Collects results in a list"""

    def __init__(self):
        self.results: List[Result] = []

    def submit_result(self, result: Result) -> None:
        self.results.append(result)


class JsonFileResultSink(ResultSink):
    """
    Appends results to a JSON array file.

    Writes are serialized so results submitted from worker threads are
    never lost to an interleaved read-modify-write.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load_results(self) -> List[dict]:
        if not self.path.is_file():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, list) else []

    def submit_result(self, result: Result) -> None:
        try:
            with self._lock:
                self._append(result)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to write result to {self.path}: {e}") from e

        logger.info(f"Saved result for session {result.session_id} to {self.path}")

    def _append(self, result: Result):
        results = self.load_results()
        results.append(result.model_dump(mode="json"))
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a temp file first so a crash never truncates the store
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(results, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise
