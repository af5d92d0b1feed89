from collections import Counter

from quizplatform.similarity import normalize_text

NO_ANSWER = "No answer"
MAX_LABEL_LENGTH = 50
SCORE_BUCKETS = [("0-20%", 20), ("21-40%", 40), ("41-60%", 60), ("61-80%", 80), ("81-100%", 100)]


def _pct(count: int, total: int) -> float:
    return round(count / total * 100, 2) if total else 0.0


def _truncate(label: str) -> str:
    return label if len(label) <= MAX_LABEL_LENGTH else label[:MAX_LABEL_LENGTH] + "..."


def _boolean_label(value) -> str:
    if value is True or (isinstance(value, str) and value.strip().lower() == "true"):
        return "True"
    if value is False or (isinstance(value, str) and value.strip().lower() == "false"):
        return "False"
    return NO_ANSWER


def _answer_labels(question, value, option_labels: dict) -> list[str]:
    if value is None or value == "" or value == []:
        return [NO_ANSWER]
    if question.type == "single_choice":
        if isinstance(value, list):
            value = value[0]
        return [option_labels.get(str(value), NO_ANSWER)]
    if question.type == "multi_select":
        values = value if isinstance(value, list) else [value]
        return [option_labels.get(str(v), NO_ANSWER) for v in values]
    if question.type == "boolean":
        return [_boolean_label(value)]
    if question.type == "ordered_sequence":
        values = value if isinstance(value, list) else [value]
        return [_truncate(" → ".join(option_labels.get(str(v), str(v)) for v in values))]
    return [_truncate(normalize_text(value)) or NO_ANSWER]


def _distribution(question, counts: Counter, total: int) -> list[dict]:
    if question.type in ("single_choice", "multi_select"):
        labels = [option["text"] for option in question.options]
    elif question.type == "boolean":
        labels = ["True", "False"]
    else:
        labels = []
    labels += [label for label in counts if label not in labels]

    rows = [
        {"label": label, "count": counts.get(label, 0), "percentage": _pct(counts.get(label, 0), total)}
        for label in labels
    ]
    rows.sort(key=lambda row: row["count"], reverse=True)
    return rows


def _user_response(attempt, question, answer, option_labels: dict) -> dict:
    user = attempt.user
    if answer is None:
        label, is_correct, points_earned = NO_ANSWER, False, 0
    else:
        label = ", ".join(_answer_labels(question, answer.get("answer"), option_labels))
        is_correct = bool(answer.get("is_correct"))
        points_earned = answer.get("points_earned") or 0
    return {
        "user_id": attempt.user_id,
        "display_name": user.display_name if user else f"user-{attempt.user_id}",
        "answer": label,
        "is_correct": is_correct,
        "points_earned": points_earned,
        "completed_at": attempt.completed_at,
    }


def _question_analytics(question, attempts) -> dict:
    option_labels = {str(option["id"]): option["text"] for option in question.options}
    total = len(attempts)
    correct = incorrect = skipped = 0
    counts = Counter()
    responses = []

    for attempt in attempts:
        answer = next((a for a in attempt.answers if a.get("question_id") == question.id), None)
        responses.append(_user_response(attempt, question, answer, option_labels))
        if answer is None:
            skipped += 1
            continue
        if answer.get("is_correct"):
            correct += 1
        else:
            incorrect += 1
        counts.update(_answer_labels(question, answer.get("answer"), option_labels))

    return {
        "question_id": question.id,
        "prompt": question.prompt,
        "type": question.type,
        "order_index": question.order_index,
        "points": question.points,
        "total_responses": total,
        "correct_count": correct,
        "incorrect_count": incorrect,
        "skipped_count": skipped,
        "accuracy": _pct(correct, total),
        "answer_distribution": _distribution(question, counts, total),
        "user_responses": responses,
    }


def score_histogram(percentages) -> list[dict]:
    buckets = [{"range": label, "count": 0} for label, _ in SCORE_BUCKETS]
    for percentage in percentages:
        for idx, (_, upper) in enumerate(SCORE_BUCKETS):
            if percentage <= upper or idx == len(SCORE_BUCKETS) - 1:
                buckets[idx]["count"] += 1
                break
    return buckets


def build_report(quiz, questions, completed_attempts) -> dict:
    attempts = [a for a in completed_attempts if a.status == "completed"]
    total = len(attempts)
    passed = sum(1 for a in attempts if a.is_passed)
    average = sum(a.percentage or 0 for a in attempts) / total if total else 0.0

    per_day = Counter(a.completed_at.date().isoformat() for a in attempts if a.completed_at)

    return {
        "quiz_id": quiz.id,
        "title": quiz.title,
        "question_count": quiz.question_count,
        "total_points": quiz.total_points,
        "summary": {
            "total_attempts": total,
            "passed_attempts": passed,
            "failed_attempts": total - passed,
            "average_percentage": round(average, 2),
            "pass_rate": _pct(passed, total),
        },
        "score_distribution": score_histogram(a.percentage or 0 for a in attempts),
        "responses_over_time": [{"date": day, "count": count} for day, count in sorted(per_day.items())],
        "question_analytics": [
            _question_analytics(q, attempts) for q in sorted(questions, key=lambda q: (q.order_index, q.id))
        ],
    }
