"""
IPO readiness scoring.

Pure functions over a set of scored questions. Each answer carries a score in
{-1, 0, 1, 2}; -1 marks the question as not applicable and removes it from both
the earned total and the maximum, so "not applicable" shrinks the denominator
instead of penalising the company.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.core.exceptions import ErrorCode, ValidationError
from app.models.assessment import Rating
from app.models.question import QuestionCategory

NOT_APPLICABLE = -1
VALID_SCORES = frozenset({-1, 0, 1, 2})
MAX_ANSWER_SCORE = 2

# Percentage ladder, checked top-down: (threshold, inclusive, rating)
RATING_THRESHOLDS = (
    (Decimal("65"), False, Rating.IPO_READY),
    (Decimal("45"), True, Rating.NEEDS_IMPROVEMENT),
)
BOTTOM_RATING = Rating.NOT_READY

TWO_PLACES = Decimal("0.01")


class ScoringError(ValidationError):
    """Answer map cannot be scored."""


@dataclass(frozen=True)
class ScoringQuestion:
    """The part of a question the scorer needs."""
    key: str
    category: str
    weight: int = 2
    text: str = ""
    help_text: Optional[str] = None


@dataclass(frozen=True)
class QuestionScore:
    key: str
    category: str
    score: int
    earned: Decimal
    max_points: Decimal

    @property
    def is_applicable(self) -> bool:
        return self.score != NOT_APPLICABLE


@dataclass(frozen=True)
class ScoreResult:
    total_score: Decimal
    max_score: Decimal
    percentage: Decimal
    rating: Rating
    breakdown: List[QuestionScore] = field(default_factory=list)

    def category_totals(self) -> Dict[str, Dict[str, Decimal]]:
        totals: Dict[str, Dict[str, Decimal]] = {}
        for item in self.breakdown:
            bucket = totals.setdefault(item.category, {"earned": Decimal("0"), "max": Decimal("0")})
            bucket["earned"] += item.earned
            bucket["max"] += item.max_points
        return totals


PRESET_QUESTIONS: Sequence[ScoringQuestion] = (
    ScoringQuestion(
        key="company_investment_plan",
        category=QuestionCategory.COMPANY.value,
        text="Is the company ready with a documented investment plan for the IPO proceeds?",
    ),
    ScoringQuestion(
        key="company_governance",
        category=QuestionCategory.COMPANY.value,
        text="Is a corporate governance framework in place meeting at least the listing-norm requirements?",
    ),
    ScoringQuestion(
        key="company_management_team",
        category=QuestionCategory.COMPANY.value,
        text="Does the company have a qualified senior management team with a good track record?",
    ),
    ScoringQuestion(
        key="company_independent_board",
        category=QuestionCategory.COMPANY.value,
        text="Are there credible independent directors on the board?",
    ),
    ScoringQuestion(
        key="financial_reporting",
        category=QuestionCategory.FINANCIAL.value,
        text="Does financial reporting comply with statutory rules and accounting standards?",
    ),
    ScoringQuestion(
        key="financial_controls",
        category=QuestionCategory.FINANCIAL.value,
        text="Are financial, operational and internal control systems robust?",
    ),
    ScoringQuestion(
        key="financial_track_record",
        category=QuestionCategory.FINANCIAL.value,
        text="Does the company show positive net worth and operating profit over the last three years?",
        help_text="Based on audited balance sheets",
    ),
    ScoringQuestion(
        key="financial_shareholding",
        category=QuestionCategory.FINANCIAL.value,
        text="Is the shareholding pattern clear and transparent?",
    ),
    ScoringQuestion(
        key="sector_outlook",
        category=QuestionCategory.SECTOR.value,
        text="Does the company operate in a sector with a positive growth outlook?",
    ),
    ScoringQuestion(
        key="sector_position",
        category=QuestionCategory.SECTOR.value,
        text="Does the company hold a defensible competitive position in its sector?",
    ),
    ScoringQuestion(
        key="sector_regulatory",
        category=QuestionCategory.SECTOR.value,
        text="Are all sector-specific licences and regulatory approvals in place?",
    ),
)


def _extract_score(key: str, answer: Any) -> int:
    if answer is None:
        raise ScoringError(
            f"Question '{key}' has not been answered",
            field=key,
            code=ErrorCode.INCOMPLETE_ASSESSMENT,
        )
    if isinstance(answer, Mapping):
        score = answer.get("score")
    else:
        score = getattr(answer, "score", None)

    # bool is an int subclass; True must not pass as 1
    if isinstance(score, bool) or not isinstance(score, int) or score not in VALID_SCORES:
        raise ScoringError(
            f"Invalid score {score!r} for question '{key}'",
            field=key,
            details={"allowed": sorted(VALID_SCORES)},
        )
    return score


def rating_for(percentage: Decimal) -> Rating:
    for threshold, inclusive, rating in RATING_THRESHOLDS:
        if percentage > threshold or (inclusive and percentage == threshold):
            return rating
    return BOTTOM_RATING


def score_question(question: ScoringQuestion, score: int) -> QuestionScore:
    if score == NOT_APPLICABLE:
        earned = Decimal("0")
        max_points = Decimal("0")
    else:
        weight = Decimal(question.weight)
        earned = Decimal(score) * weight / MAX_ANSWER_SCORE
        max_points = weight
    return QuestionScore(
        key=question.key,
        category=question.category,
        score=score,
        earned=earned,
        max_points=max_points,
    )


def calculate_preset_score(
    answers: Mapping[str, Any],
    questions: Optional[Sequence[ScoringQuestion]] = None,
) -> ScoreResult:
    """
    Score an answer map against a question set.

    Args:
        answers: question key -> answer (mapping or object with ``score``)
        questions: questions to score; defaults to the 11 preset questions

    Returns:
        ScoreResult with totals rounded to two places

    Raises:
        ScoringError: a question is unanswered or carries an invalid score
    """
    if questions is None:
        questions = PRESET_QUESTIONS

    breakdown = [score_question(q, _extract_score(q.key, answers.get(q.key))) for q in questions]

    total = sum((item.earned for item in breakdown), Decimal("0"))
    maximum = sum((item.max_points for item in breakdown), Decimal("0"))

    if maximum == 0:
        percentage = Decimal("0")
    else:
        percentage = total / maximum * 100

    total = total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    maximum = maximum.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    percentage = percentage.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    return ScoreResult(
        total_score=total,
        max_score=maximum,
        percentage=percentage,
        rating=rating_for(percentage),
        breakdown=breakdown,
    )
