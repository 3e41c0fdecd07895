"""Question selection and scoring for test attempts.

Attempts are graded against the snapshot stored on the test instance, never
against the live question rows, so editing a question cannot change a grade
that was already handed out.
"""

import random
from dataclasses import dataclass

from drivingschool.models.question import Question


@dataclass(frozen=True)
class GradeResult:
    score: int
    total: int
    percentage: int


def select_random_questions(pool: list, count: int, rng: random.Random | None = None) -> list:
    shuffled = list(pool)
    (rng or random).shuffle(shuffled)
    return shuffled[:max(count, 0)]


def shuffle_questions(questions: list, rng: random.Random | None = None) -> list:
    return select_random_questions(questions, len(questions), rng)


def snapshot_question(question: Question) -> dict:
    return {
        'id': question.id,
        'question_text': question.question_text,
        'explanation': question.explanation,
        'type': question.type,
        'choices': [
            {'label': choice.get('label'), 'is_correct': bool(choice.get('is_correct'))}
            for choice in (question.choices or [])
        ],
        'tags': list(question.tags or []),
    }


def public_question(snapshot: dict) -> dict:
    return {
        'id': snapshot['id'],
        'question_text': snapshot['question_text'],
        'type': snapshot['type'],
        'choices': [{'label': choice['label']} for choice in snapshot.get('choices', [])],
    }


def correct_labels(snapshot: dict) -> set[str]:
    return {choice['label'] for choice in snapshot.get('choices', []) if choice.get('is_correct')}


def is_answer_correct(snapshot: dict, answer) -> bool:
    if answer is None or answer == '':
        return False

    if snapshot.get('type') == 'multiple_choice':
        selected = {item for item in answer if isinstance(item, str)} if isinstance(answer, list) else set()
        return bool(selected) and selected == correct_labels(snapshot)

    correct_choice = next((choice for choice in snapshot.get('choices', []) if choice.get('is_correct')), None)
    return correct_choice is not None and answer == correct_choice['label']


def round_half_up_percentage(correct: int, total: int) -> int:
    if total <= 0:
        return 0
    return (correct * 200 + total) // (2 * total)


def grade_answers(questions: list[dict], answers: dict | None) -> GradeResult:
    answers = answers or {}
    correct = sum(1 for question in questions if is_answer_correct(question, answers.get(question['id'])))
    total = len(questions)
    return GradeResult(score=correct, total=total, percentage=round_half_up_percentage(correct, total))


def is_passing(percentage: int, threshold: int) -> bool:
    return percentage >= threshold
