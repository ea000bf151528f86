"""
Observation Resolver
Selects the most recent qualifying observation for a patient and metric(s)
"""
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .snapshot import MetricType, Observation

MetricSpec = Union[MetricType, str, Sequence[Union[MetricType, str]]]


def _as_metrics(metric_types: MetricSpec) -> Tuple[MetricType, ...]:
    if isinstance(metric_types, (MetricType, str)):
        return (MetricType(metric_types),)
    metrics = tuple(MetricType(m) for m in metric_types)
    if not metrics:
        raise ValueError("At least one metric type is required")
    return metrics


def resolve_latest(
    patient_id: str,
    metric_types: MetricSpec,
    observations: Iterable[Observation]
) -> Optional[Observation]:
    """
    Return the newest observation for `patient_id` in which every requested
    metric is recorded.

    Metrics requested together (e.g. systolic and diastolic) always come from
    the same record. If no single record carries all of them, None is returned.
    Ties on `collected_at` keep the first record in stream order.
    """
    metrics = _as_metrics(metric_types)
    latest: Optional[Observation] = None
    for obs in observations:
        if obs.patient_id != patient_id:
            continue
        if any(obs.value(m) is None for m in metrics):
            continue
        if latest is None or obs.collected_at > latest.collected_at:
            latest = obs
    return latest


def latest_value(
    patient_id: str,
    metric: Union[MetricType, str],
    observations: Iterable[Observation]
) -> Any:
    """Most recent non-null value of a single metric, or None."""
    obs = resolve_latest(patient_id, metric, observations)
    return obs.value(metric) if obs is not None else None


def group_by_patient(observations: Iterable[Observation]) -> Dict[str, List[Observation]]:
    """Split a mixed observation stream into per-patient lists (order preserved)."""
    grouped: Dict[str, List[Observation]] = defaultdict(list)
    for obs in observations:
        grouped[obs.patient_id].append(obs)
    return dict(grouped)
