"""
Proctoring Errors - Error taxonomy for the proctoring session controller

Proctoring violations are not errors: they are modeled signals that drive
the session state machine and reach the UI as notices.
"""


class ProctoringError(Exception):
    """Base class for all proctoring errors"""


class InvalidTestError(ProctoringError):
    """Test is malformed, missing or cannot be attempted"""


class TestNotFoundError(InvalidTestError):
    """No test exists with the requested id"""

    __test__ = False  # not a pytest test class

    def __init__(self, test_id: str):
        super().__init__(f"Test not found: {test_id}")
        self.test_id = test_id


class TestNotLiveError(InvalidTestError):
    """Test exists but its status does not allow attempts"""

    __test__ = False

    def __init__(self, test_id: str, status: str):
        super().__init__(f"Test {test_id} is not live (status={status})")
        self.test_id = test_id
        self.status = status


class InvalidStateError(ProctoringError):
    """Operation invoked while the session is in the wrong phase"""


class InvalidSelectionError(ProctoringError):
    """Question or option index out of range"""


class PersistenceError(ProctoringError):
    """Result could not be written to the result sink"""
