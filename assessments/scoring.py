# assessments/scoring.py
"""
Auto-grading rules and result aggregation.

Objective questions (mcq, true_false) are correct iff the selected option
is marked correct. Written answers are compared to the model answer,
trimmed and case-insensitive, all or nothing. A written answer with no
model answer cannot be auto-graded: it scores 0 with correctness None
until a teacher grades it. A missing answer scores 0 and counts as
incorrect.
"""
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from exams.models import Question

ScoreSummary = namedtuple('ScoreSummary', ['total_points', 'max_points', 'percentage'])

GRADE_BANDS = (
    (90, 'A'),
    (80, 'B'),
    (70, 'C'),
    (60, 'D'),
)

OBJECTIVE_TYPES = (Question.QuestionType.MCQ, Question.QuestionType.TRUE_FALSE)
WRITTEN_TYPES = (Question.QuestionType.SHORT_ANSWER, Question.QuestionType.LONG_ANSWER)


def _normalise(text):
    return (text or '').strip().lower()


def is_auto_gradable(question):
    if question.question_type in OBJECTIVE_TYPES:
        return True
    return bool(_normalise(question.correct_answer))


def score_answer(question, answer=None):
    """
    Returns (is_correct, points_earned) for one question.
    `answer` is anything with `selected_option_id` and `answer_text`, or None.
    """
    if question.question_type in OBJECTIVE_TYPES:
        option_id = getattr(answer, 'selected_option_id', None)
        if option_id is None:
            return False, 0
        option = next((opt for opt in question.options.all() if opt.id == option_id), None)
        if option is not None and option.is_correct:
            return True, question.points
        return False, 0

    text = _normalise(getattr(answer, 'answer_text', None))
    model = _normalise(question.correct_answer)
    if not model:
        return None, 0
    if not text:
        return False, 0
    if text == model:
        return True, question.points
    return False, 0


def percentage_of(total_points, max_points):
    if not max_points:
        return Decimal('0.00')
    value = Decimal(total_points) * 100 / Decimal(max_points)
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def summarise(points_by_question, questions):
    """Aggregate earned points over the exam's questions."""
    total = sum(points_by_question.get(q.id) or 0 for q in questions)
    maximum = sum(q.points for q in questions)
    return ScoreSummary(total, maximum, percentage_of(total, maximum))


def grade_letter(percentage):
    percentage = Decimal(str(percentage))
    for lower_bound, letter in GRADE_BANDS:
        if percentage >= lower_bound:
            return letter
    return 'F'
