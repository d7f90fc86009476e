# assessments/grading.py
import logging
from collections import namedtuple

from django.db import DatabaseError, transaction
from django.utils import timezone

from . import scoring
from .exceptions import LoadFailure, PersistFailure, ValidationFailure
from .models import ExamResult
from .signals import notify, result_finalized
from .store import ExamStore

logger = logging.getLogger(__name__)

GradeSuggestion = namedtuple(
    'GradeSuggestion', ['question', 'answer', 'is_correct', 'points', 'auto_gradable'],
)


def suggest_grades(session, store=None):
    """Auto-grade every question of the session's exam. Advisory only."""
    store = store or ExamStore()
    try:
        questions = store.list_questions(session.exam_id)
        answers = {answer.question_id: answer for answer in store.list_answers(session.id)}
    except DatabaseError as exc:
        logger.error("Could not load answers of session %s for grading", session.id, exc_info=True)
        raise LoadFailure("The submission could not be loaded for grading.") from exc
    suggestions = []
    for question in questions:
        answer = answers.get(question.id)
        is_correct, points = scoring.score_answer(question, answer)
        suggestions.append(GradeSuggestion(question, answer, is_correct, points, scoring.is_auto_gradable(question)))
    return suggestions


def finalize_grading(session, grader=None, overrides=None, comments='', store=None, clock=timezone.now):
    """
    Write final points for every question and upsert the session's result.

    `overrides` maps question id -> {'points': int, 'comment': str}. Questions
    without an override keep their auto-grade suggestion.
    """
    store = store or ExamStore()
    overrides = overrides or {}
    if not session.is_locked:
        raise ValidationFailure("Only submitted sessions can be graded.")

    suggestions = suggest_grades(session, store)
    by_question = {s.question.id: s for s in suggestions}
    unknown = set(overrides) - set(by_question)
    if unknown:
        raise ValidationFailure(f"Questions {sorted(unknown)} are not part of this exam.")

    grades = []
    points_by_question = {}
    for suggestion in suggestions:
        question = suggestion.question
        override = overrides.get(question.id)
        comment = None
        if override is not None:
            points = override.get('points')
            if points is None or not 0 <= points <= question.points:
                raise ValidationFailure(f"Points for question {question.id} must be between 0 and {question.points}.")
            comment = override.get('comment')
            is_correct = points == question.points
        else:
            points = suggestion.points
            is_correct = suggestion.is_correct if suggestion.is_correct is not None else False
        points_by_question[question.id] = points
        grades.append((question.id, is_correct, points, comment))

    summary = scoring.summarise(points_by_question, [s.question for s in suggestions])
    try:
        with transaction.atomic():
            store.save_grades(session.id, grades)
            result = store.upsert_result(
                session.id,
                total_points=summary.total_points,
                max_points=summary.max_points,
                percentage=summary.percentage,
                graded_by=grader,
                comments=comments or '',
                graded_at=clock(),
            )
            store.mark_graded(session.id)
    except DatabaseError as exc:
        logger.error("Could not store grades for session %s", session.id, exc_info=True)
        raise PersistFailure("Grades could not be saved.") from exc

    session.is_graded = True
    logger.info(
        "Session %s graded: %s/%s (%s%%) by %s",
        session.id, summary.total_points, summary.max_points, summary.percentage, grader or 'auto',
    )
    notify(result_finalized, ExamResult, result=result, grader=grader)
    return result
