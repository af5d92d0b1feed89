import logging
import math
from typing import Any, Iterable, List

from quizplatform.errors import ValidationError
from quizplatform.schemas import (
    BooleanKey,
    FreeTextKey,
    MultiSelectKey,
    OrderedSequenceKey,
    ScoredAnswer,
    SingleChoiceKey,
)
from quizplatform.similarity import DEFAULT_THRESHOLD, is_match

logger = logging.getLogger(__name__)

DIFFICULTY_MULTIPLIERS = {"easy": 1.0, "medium": 1.5, "hard": 2.0}
BASE_XP_PER_QUESTION = 10
PASSING_BONUS = 1.5
PERFECT_SCORE_BONUS = 1.25
FIRST_ATTEMPT_BONUS = 1.1
DEFAULT_PASSING_SCORE = 60.0


def _as_id_list(question_id: int, raw_answer: Any) -> List[str]:
    if not isinstance(raw_answer, (list, tuple)):
        raise ValidationError(f"Answer for question {question_id} must be a list of ids")
    return [str(item) for item in raw_answer]


def _as_bool(question_id: int, raw_answer: Any) -> bool:
    if isinstance(raw_answer, bool):
        return raw_answer
    if isinstance(raw_answer, str) and raw_answer.strip().lower() in ("true", "false"):
        return raw_answer.strip().lower() == "true"
    raise ValidationError(f"Answer for question {question_id} must be true or false")


def _as_single_id(question_id: int, raw_answer: Any) -> str:
    if isinstance(raw_answer, (list, tuple)):
        if len(raw_answer) != 1:
            raise ValidationError(f"Answer for question {question_id} must be a single option id")
        raw_answer = raw_answer[0]
    if isinstance(raw_answer, (dict, bool)):
        raise ValidationError(f"Answer for question {question_id} must be a single option id")
    return str(raw_answer)


def is_answer_correct(question, raw_answer: Any) -> bool:
    if raw_answer is None:
        return False

    key = question.answer_key
    if isinstance(key, SingleChoiceKey):
        return _as_single_id(question.id, raw_answer) == key.option_id
    if isinstance(key, MultiSelectKey):
        return set(_as_id_list(question.id, raw_answer)) == set(key.option_ids)
    if isinstance(key, BooleanKey):
        return _as_bool(question.id, raw_answer) == key.value
    if isinstance(key, OrderedSequenceKey):
        return _as_id_list(question.id, raw_answer) == key.item_ids
    if isinstance(key, FreeTextKey):
        if not isinstance(raw_answer, (str, int, float)) or isinstance(raw_answer, bool):
            raise ValidationError(f"Answer for question {question.id} must be text")
        return is_match(str(raw_answer), key.text, DEFAULT_THRESHOLD)
    raise ValidationError(f"Unsupported question type for question {question.id}")


def evaluate_answer(question, raw_answer: Any) -> tuple[bool, int]:
    is_correct = is_answer_correct(question, raw_answer)
    return is_correct, question.points if is_correct else 0


def score_answers(questions: Iterable, answers: Iterable) -> List[ScoredAnswer]:
    """Score submitted answers against a quiz's questions.

    Answers that reference a question outside the quiz are dropped rather than
    rejected so a client holding a stale copy of the quiz can still submit.
    When a question is answered more than once only the last answer counts.
    """
    question_lookup = {q.id: q for q in questions}
    latest = {}
    for answer in answers:
        if answer.question_id not in question_lookup:
            logger.debug("Skipping answer for unknown question_id=%s", answer.question_id)
            continue
        if answer.question_id in latest:
            logger.debug("Replacing earlier answer for question_id=%s", answer.question_id)
        latest[answer.question_id] = answer

    scored = []
    for question_id, answer in latest.items():
        question = question_lookup[question_id]
        is_correct, points_earned = evaluate_answer(question, answer.answer)
        scored.append(
            ScoredAnswer(
                question_id=question.id,
                answer=answer.answer,
                is_correct=is_correct,
                points_earned=points_earned,
                time_spent=answer.time_spent,
            )
        )
    return scored


def compute_percentage(score: int, max_score: int) -> float:
    if not max_score:
        return 0.0
    return round(score / max_score * 100, 2)


def is_passing(score: int, max_score: int, passing_score: float | None) -> bool:
    # compared on the exact ratio; the stored percentage is rounded
    threshold = DEFAULT_PASSING_SCORE if passing_score is None else passing_score
    if not max_score:
        return threshold <= 0
    return score * 100 >= threshold * max_score


def is_perfect(score: int, max_score: int) -> bool:
    return max_score > 0 and score == max_score


def calculate_xp(
    question_count: int,
    difficulty: str,
    passed: bool,
    perfect: bool,
    is_first_attempt: bool,
) -> int:
    xp = question_count * BASE_XP_PER_QUESTION
    xp *= DIFFICULTY_MULTIPLIERS.get(difficulty, 1.0)
    xp *= PASSING_BONUS if passed else 1.0
    xp *= PERFECT_SCORE_BONUS if perfect else 1.0
    xp *= FIRST_ATTEMPT_BONUS if is_first_attempt else 1.0
    # half-up, not Python's banker's rounding
    return int(math.floor(xp + 0.5))
