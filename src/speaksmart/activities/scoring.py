"""Quiz scoring and in-memory answer collection."""

import math

from speaksmart.errors import UserInputError
from speaksmart.models.activity import Question


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_score(correct: int, total: int) -> int:
    """Percentage of correct answers, rounded half up. 0 for an empty quiz."""
    if total <= 0:
        return 0
    return round_half_up(100 * correct / total)


class AnswerSheet:
    """Answers for one attempt. Each question can be answered once.

    Nothing here is persisted; abandoning the attempt discards the sheet.
    """

    def __init__(self, questions: list[Question]):
        self.questions = questions
        self._answers: dict[int, int] = {}

    def submit_answer(self, question_index: int, option_index: int) -> bool:
        """Record an answer and return whether it was correct.

        Raises:
            UserInputError: Index out of range or question already answered.
        """
        if not 0 <= question_index < len(self.questions):
            raise UserInputError(f"No question at index {question_index}")
        if question_index in self._answers:
            raise UserInputError("Question already answered")
        question = self.questions[question_index]
        if not 0 <= option_index < len(question.options):
            raise UserInputError(f"No option at index {option_index}")
        self._answers[question_index] = option_index
        return question.is_correct(option_index)

    @property
    def answers(self) -> dict[int, int]:
        return dict(self._answers)

    def is_answered(self, question_index: int) -> bool:
        return question_index in self._answers

    @property
    def answered(self) -> int:
        return len(self._answers)

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def correct(self) -> int:
        return sum(
            1 for index, option in self._answers.items()
            if self.questions[index].is_correct(option)
        )

    @property
    def score(self) -> int:
        return compute_score(self.correct, self.total)
