"""
Coverage/Progress Calculator
Percent of eligible patients with the indicator's data recorded, scored
against the indicator's target.
"""
import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .catalog import Indicator
from .evaluator import RuleEvaluator
from .snapshot import Observation, PatientSnapshot

WARNING_FRACTION = 0.8


class CoverageStatus(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    POOR = "poor"


def round_half_up(value: float) -> int:
    # round() uses banker's rounding: 62.5 -> 62
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class CoverageResult:
    indicator_id: str
    code: str
    name: str
    target_percent: int
    recorded: int
    eligible: int
    percent: int
    status: CoverageStatus
    points_earned: int
    gap: int

    def to_record(self) -> Dict[str, object]:
        record = asdict(self)
        record["status"] = self.status.value
        return record


def coverage_status(percent: int, target_percent: int) -> CoverageStatus:
    if percent >= target_percent:
        return CoverageStatus.GOOD
    if percent >= WARNING_FRACTION * target_percent:
        return CoverageStatus.WARNING
    return CoverageStatus.POOR


def calculate_coverage(indicator: Indicator, recorded_count: int, total_eligible_count: int) -> CoverageResult:
    """
    Coverage for one indicator in one reporting cycle.

    percent is 0 when nobody is eligible; points are capped at the target.
    Raises ValueError for negative counts or more recorded than eligible.
    """
    if recorded_count < 0 or total_eligible_count < 0:
        raise ValueError("Coverage counts must not be negative")
    if recorded_count > total_eligible_count:
        raise ValueError(
            f"Recorded count {recorded_count} exceeds eligible count {total_eligible_count} for {indicator.id}"
        )

    target = indicator.target_percent
    percent = round_half_up(recorded_count / total_eligible_count * 100) if total_eligible_count else 0
    return CoverageResult(
        indicator_id=indicator.id,
        code=indicator.code,
        name=indicator.name,
        target_percent=target,
        recorded=recorded_count,
        eligible=total_eligible_count,
        percent=percent,
        status=coverage_status(percent, target),
        points_earned=min(percent, target),
        gap=max(0, target - percent),
    )


@dataclass(frozen=True)
class CoverageSummary:
    score: int
    rating: str
    indicators: Tuple[CoverageResult, ...]

    def to_record(self) -> Dict[str, object]:
        return {
            "score": self.score,
            "rating": self.rating,
            "indicators": [r.to_record() for r in self.indicators],
        }


def rating_for(score: float) -> str:
    if score >= 75:
        return "On Target"
    if score >= 50:
        return "Needs Work"
    return "Below Target"


def summarize_coverage(results: Iterable[CoverageResult]) -> CoverageSummary:
    """Overall score: mean of capped attainment over indicators that have eligible patients."""
    results = tuple(results)
    scored = [r for r in results if r.eligible > 0]
    score = sum(r.points_earned for r in scored) / len(scored) if scored else 0
    return CoverageSummary(score=round_half_up(score), rating=rating_for(score), indicators=results)


def measure_population(
    indicator: Indicator,
    patients: Sequence[PatientSnapshot],
    observations_by_patient: Mapping[str, Sequence[Observation]],
    evaluator: Optional[RuleEvaluator] = None
) -> Tuple[int, int]:
    """
    (recorded, eligible) for one indicator, using the engine's own
    applicability and data-sufficiency checks.

    InvalidThresholdComparison propagates; callers sweeping a whole catalog
    decide whether to skip the indicator. Raises ValueError for flag
    indicators, which have nothing to record.
    """
    if not indicator.measures_coverage:
        raise ValueError(f"{indicator.id} is a flag indicator and has no coverage")
    evaluator = evaluator or RuleEvaluator()
    recorded = eligible = 0
    for snapshot in patients:
        assessment = evaluator.assess(indicator, snapshot, observations_by_patient.get(snapshot.patient_id, ()))
        if not assessment.applicable:
            continue
        eligible += 1
        if assessment.recorded:
            recorded += 1
    return recorded, eligible
