"""
Test Documents - Migrates stored test documents into TestDefinition

The builder has produced several document shapes over time:

- ``{testTitle, timeLimit, questions: [{questionText, type, marks,
  options: [{id, text, isCorrect}]}]}`` from the dashboard builder
- the same shape with a legacy ``correctAnswer`` index per question
- ``{globalTimer, questions: [{type: "mcq", text, options: [str],
  answer | answers}]}`` from the file exporter (timer in minutes)

Correctness is always expressed as ``isCorrect`` flags after migration.
A document whose legacy index disagrees with its flags is rejected rather
than guessed.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from .errors import InvalidTestError
from .models import Question, QuestionType, TestDefinition, TestStatus

logger = logging.getLogger(__name__)

_LEGACY_SINGLE_KEYS = ("correctAnswer", "answer")
_MCQ_TYPES = {"mcq", "single", "multiple", None}


def normalize_test_document(doc: Dict[str, Any], test_id: Optional[str] = None) -> TestDefinition:
    """
    Convert a raw test document into a TestDefinition.

    Args:
        doc: Test document as stored by the builder
        test_id: Id to use when the document does not carry one

    Returns:
        Validated TestDefinition

    Raises:
        InvalidTestError: if the document cannot be migrated
    """
    if not isinstance(doc, dict):
        raise InvalidTestError("Test document must be an object")

    resolved_id = doc.get("id") or test_id
    if not resolved_id:
        raise InvalidTestError("Test document has no id")

    raw_questions = doc.get("questions") or []
    if not isinstance(raw_questions, list):
        raise InvalidTestError(f"Test {resolved_id}: questions must be a list")

    questions = [
        _normalize_question(raw, index, resolved_id)
        for index, raw in enumerate(raw_questions)
    ]

    try:
        return TestDefinition(
            id=str(resolved_id),
            title=doc.get("title") or doc.get("testTitle") or "Untitled Test",
            description=doc.get("description"),
            status=doc.get("status") or TestStatus.DRAFT,
            time_limit_seconds=_time_limit_seconds(doc),
            questions=tuple(questions),
        )
    except (ValidationError, ValueError) as e:
        raise InvalidTestError(f"Test {resolved_id}: {e}") from e


def _time_limit_seconds(doc: Dict[str, Any]) -> Optional[int]:
    """Time limit in seconds; ``globalTimer`` is stored in minutes"""
    for key in ("timeLimitSeconds", "timeLimit"):
        if doc.get(key):
            return int(doc[key])
    if doc.get("globalTimer"):
        return int(float(doc["globalTimer"]) * 60)
    return None


def _normalize_question(raw: Dict[str, Any], index: int, test_id: str) -> Question:
    label = f"Test {test_id}, question {index + 1}"
    if not isinstance(raw, dict):
        raise InvalidTestError(f"{label}: question must be an object")

    raw_type = raw.get("type")
    if raw_type not in _MCQ_TYPES:
        raise InvalidTestError(f"{label}: unsupported question type '{raw_type}'")

    options = _normalize_options(raw.get("options") or [])
    flagged = {i for i, opt in enumerate(options) if opt["isCorrect"]}
    try:
        legacy = _legacy_correct_indices(raw)
    except (TypeError, ValueError) as e:
        raise InvalidTestError(f"{label}: invalid correct answer index") from e

    if legacy is not None:
        out_of_range = [i for i in legacy if not 0 <= i < len(options)]
        if out_of_range:
            raise InvalidTestError(f"{label}: correct answer index {out_of_range[0]} out of range")
        if flagged and flagged != legacy:
            raise InvalidTestError(
                f"{label}: legacy correct answer {sorted(legacy)} conflicts with "
                f"options marked correct {sorted(flagged)}"
            )
        if not flagged:
            logger.debug(f"{label}: migrating legacy correct answer {sorted(legacy)}")
            for i in legacy:
                options[i]["isCorrect"] = True
        flagged = legacy

    if raw_type in ("single", "multiple"):
        qtype = QuestionType(raw_type)
    else:
        qtype = QuestionType.MULTIPLE if len(flagged) > 1 else QuestionType.SINGLE

    try:
        return Question(
            id=str(raw.get("id") or f"q{index + 1}"),
            text=raw.get("questionText") or raw.get("text") or "",
            type=qtype,
            options=tuple(options),
            marks=int(raw.get("marks") or 1),
            explanation=raw.get("explanation") or None,
        )
    except (ValidationError, ValueError) as e:
        raise InvalidTestError(f"{label}: {e}") from e


def _normalize_options(raw_options: List[Any]) -> List[Dict[str, Any]]:
    options = []
    for i, opt in enumerate(raw_options):
        if isinstance(opt, dict):
            options.append({
                "id": str(opt.get("id") or f"opt{i + 1}"),
                "text": str(opt.get("text") or ""),
                "isCorrect": bool(opt.get("isCorrect", False)),
            })
        else:
            options.append({"id": f"opt{i + 1}", "text": str(opt), "isCorrect": False})
    return options


def _legacy_correct_indices(raw: Dict[str, Any]) -> Optional[Set[int]]:
    if isinstance(raw.get("answers"), list):
        return {int(i) for i in raw["answers"]}
    for key in _LEGACY_SINGLE_KEYS:
        value = raw.get(key)
        if value is not None and value != "":
            return {int(value)}
    return None
