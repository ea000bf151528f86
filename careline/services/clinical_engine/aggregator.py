"""
Action Aggregator
Runs every catalog indicator over a patient population and returns one
priority-ordered action list with summary statistics.
"""
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .catalog import Category, Framework, IndicatorCatalog, Priority, PRIORITY_ORDER, priority_rank
from .errors import InvalidThresholdComparison
from .evaluator import ClinicalAction, RuleEvaluator
from .resolver import group_by_patient
from .snapshot import Observation, PatientSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedEvaluation:
    """A (patient, indicator) pair excluded from the output, with the reason."""
    patient_id: str
    indicator_id: str
    reason: str

    def to_record(self) -> Dict[str, str]:
        return {"patient_id": self.patient_id, "indicator_id": self.indicator_id, "reason": self.reason}


@dataclass(frozen=True)
class ActionStats:
    total: int
    by_priority: Dict[str, int]
    by_category: Dict[str, int]
    by_framework: Dict[str, int]

    @classmethod
    def from_actions(cls, actions: Sequence[ClinicalAction]) -> "ActionStats":
        priorities = Counter(a.priority.value for a in actions)
        return cls(
            total=len(actions),
            by_priority={p.value: priorities.get(p.value, 0) for p in PRIORITY_ORDER},
            by_category=dict(Counter(a.category.value for a in actions)),
            by_framework=dict(Counter(a.framework.value for a in actions)),
        )

    def to_record(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "by_priority": dict(self.by_priority),
            "by_category": dict(self.by_category),
            "by_framework": dict(self.by_framework),
        }


@dataclass(frozen=True)
class AggregationResult:
    """Sorted actions plus skipped evaluations; stats are computed once on creation."""
    actions: Tuple[ClinicalAction, ...]
    skipped: Tuple[SkippedEvaluation, ...] = ()
    stats: ActionStats = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "stats", ActionStats.from_actions(self.actions))

    @property
    def partial(self) -> bool:
        return bool(self.skipped)


def sort_by_priority(actions: Iterable[ClinicalAction]) -> List[ClinicalAction]:
    """Most urgent first; ties keep their encounter order (sorted() is stable)."""
    return sorted(actions, key=lambda a: priority_rank(a.priority))


def merge(*results: AggregationResult) -> AggregationResult:
    """
    Combine evaluation batches without duplicating (patient, indicator) pairs.

    Later batches win: an action recomputed in a later batch replaces the
    earlier one and takes the later batch's position before sorting.
    """
    latest: Dict[Tuple[str, str], ClinicalAction] = {}
    skipped: Dict[Tuple[str, str], SkippedEvaluation] = {}
    for result in results:
        for action in result.actions:
            latest.pop(action.key, None)
            latest[action.key] = action
            skipped.pop(action.key, None)
        for skip in result.skipped:
            key = (skip.patient_id, skip.indicator_id)
            latest.pop(key, None)
            skipped[key] = skip
    return AggregationResult(actions=tuple(sort_by_priority(latest.values())), skipped=tuple(skipped.values()))


def filter_actions(
    actions: Iterable[ClinicalAction],
    priority: Optional[Priority] = None,
    category: Optional[Category] = None,
    framework: Optional[Framework] = None,
    patient_id: Optional[str] = None
) -> List[ClinicalAction]:
    filtered = []
    for action in actions:
        if priority is not None and action.priority is not Priority(priority):
            continue
        if category is not None and action.category is not Category(category):
            continue
        if framework is not None and action.framework is not Framework(framework):
            continue
        if patient_id is not None and action.patient_id != str(patient_id):
            continue
        filtered.append(action)
    return filtered


class ActionAggregator:
    """
    Evaluates a catalog over a population.

    Patients are independent, so with max_workers > 1 they are evaluated in a
    thread pool; results are collected in input order and sorted once after
    all workers finish.
    """

    def __init__(self, catalog: IndicatorCatalog, evaluator: Optional[RuleEvaluator] = None, max_workers: int = 1):
        self.catalog = catalog
        self.evaluator = evaluator or RuleEvaluator()
        self.max_workers = max(1, max_workers)

    def evaluate_patient(
        self,
        snapshot: PatientSnapshot,
        observations: Sequence[Observation] = ()
    ) -> Tuple[List[ClinicalAction], List[SkippedEvaluation]]:
        context = self.evaluator.context_for(snapshot)
        actions: List[ClinicalAction] = []
        skipped: List[SkippedEvaluation] = []
        for indicator in self.catalog:
            try:
                action = self.evaluator.evaluate_indicator(indicator, snapshot, observations, context)
            except InvalidThresholdComparison as e:
                logger.warning(f"⚠️ Skipped {indicator.id} for patient {snapshot.patient_id}: {e}")
                skipped.append(SkippedEvaluation(snapshot.patient_id, indicator.id, str(e)))
                continue
            if action is not None:
                actions.append(action)
        return actions, skipped

    def aggregate(
        self,
        patients: Iterable[PatientSnapshot],
        observations: Iterable[Observation] = ()
    ) -> AggregationResult:
        patients = list(patients)
        by_patient = group_by_patient(observations)

        def run(snapshot: PatientSnapshot):
            return self.evaluate_patient(snapshot, by_patient.get(snapshot.patient_id, ()))

        if self.max_workers > 1 and len(patients) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                per_patient = list(pool.map(run, patients))
        else:
            per_patient = [run(p) for p in patients]

        actions: List[ClinicalAction] = []
        skipped: List[SkippedEvaluation] = []
        seen = set()
        for patient_actions, patient_skipped in per_patient:
            for action in patient_actions:
                # Same patient listed twice in the input: keep the last evaluation
                if action.key in seen:
                    actions = [a for a in actions if a.key != action.key]
                seen.add(action.key)
                actions.append(action)
            skipped.extend(patient_skipped)

        result = AggregationResult(actions=tuple(sort_by_priority(actions)), skipped=tuple(skipped))
        logger.info(
            f"📋 Evaluated {len(patients)} patients against {len(self.catalog)} indicators "
            f"(catalog {self.catalog.version}): {result.stats.total} actions, {len(skipped)} skipped"
        )
        return result
