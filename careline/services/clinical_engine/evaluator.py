"""
Rule Evaluator
Decides, for one indicator and one patient, whether a clinical action is needed

Evaluation order:
    1. Applicability - indicator not relevant -> no action
    2. Variant selection - age/frailty dependent target chosen up front
    3. Data sufficiency - missing or stale data -> "missing data" action
    4. Comparison - within target -> no action, otherwise a breach action,
       escalated when the value is far outside target

Exactly one action (or none) is produced per (patient, indicator). The
evaluator is pure: it reads the snapshot and observations and never mutates
them.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from .catalog import (
    Category,
    Framework,
    Indicator,
    Outcome,
    Priority,
    Rule,
    RuleKind,
    ThresholdVariant,
    _COMMON_PLACEHOLDERS,
)
from .errors import InvalidThresholdComparison
from .predicates import PatientContext, evaluate_predicate
from .resolver import resolve_latest
from .snapshot import SNAPSHOT_FIELDS, Observation, PatientSnapshot, months_between
from .vocabulary import DEFAULT_MATCHER, VocabularyMatcher

logger = logging.getLogger(__name__)


class Trigger(str, Enum):
    MISSING_DATA = "missing_data"
    STALE_DATA = "stale_data"
    OUT_OF_TARGET = "out_of_target"


class ClinicalAction(BaseModel):
    """A recommended next step for one patient under one indicator (flat, JSON-safe)."""
    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    indicator_id: str
    code: str
    title: str
    framework: Framework
    category: Category
    priority: Priority
    trigger: Trigger
    reason: str
    action_required: str
    due_within: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.patient_id, self.indicator_id)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class Assessment:
    """
    Full result of evaluating one indicator for one patient.

    `recorded` is True when the data or intervention the indicator tracks is
    present (used for population coverage), and None for flag indicators,
    which track nothing; `action` is the finding, if any.
    """
    applicable: bool
    recorded: Optional[bool]
    action: Optional[ClinicalAction] = None


NOT_APPLICABLE = Assessment(applicable=False, recorded=False)

# Used when a treatment rule meets a patient whose medication list is unknown
MEDICATION_LIST_MISSING = Outcome(
    priority=Priority.HIGH,
    reason="No medication list on record",
    action_required="Reconcile and record current medications",
    due_within="14 days",
)


def _fmt(value: Any) -> str:
    if value is None:
        return "unknown"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return f"{value:g}"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RuleEvaluator:
    """
    Evaluates catalog indicators against patient snapshots.

    `as_of` pins "today" for age and recency calculations; it defaults to the
    current date, captured when a patient context is built.
    """

    def __init__(self, matcher: Optional[VocabularyMatcher] = None, as_of: Optional[date] = None):
        self.matcher = matcher or DEFAULT_MATCHER
        self.as_of = as_of
        self._handlers = {
            RuleKind.THRESHOLD: self._eval_threshold,
            RuleKind.CATEGORICAL: self._eval_categorical,
            RuleKind.TREATMENT: self._eval_treatment,
            RuleKind.REVIEW: self._eval_review,
            RuleKind.RECORDED: self._eval_recorded,
            RuleKind.FLAG: self._eval_flag,
        }

    def context_for(self, snapshot: PatientSnapshot) -> PatientContext:
        return PatientContext.from_snapshot(snapshot, self.as_of or date.today())

    def evaluate_indicator(
        self,
        indicator: Indicator,
        snapshot: PatientSnapshot,
        observations: Sequence[Observation] = (),
        context: Optional[PatientContext] = None
    ) -> Optional[ClinicalAction]:
        return self.assess(indicator, snapshot, observations, context).action

    def assess(
        self,
        indicator: Indicator,
        snapshot: PatientSnapshot,
        observations: Sequence[Observation] = (),
        context: Optional[PatientContext] = None
    ) -> Assessment:
        """
        Raises InvalidThresholdComparison if the rule cannot be applied to the
        resolved value's type.
        """
        if context is None:
            context = self.context_for(snapshot)

        if not evaluate_predicate(indicator.applicability, snapshot, context, self.matcher):
            return NOT_APPLICABLE

        variant = self._select_variant(indicator.rule, snapshot, context)
        handler = self._handlers[indicator.rule.kind]
        return handler(indicator, variant, snapshot, observations, context)

    # ==================== Helpers ====================

    def _select_variant(self, rule: Rule, snapshot: PatientSnapshot, context: PatientContext) -> Optional[ThresholdVariant]:
        for variant in rule.variants:
            if variant.when is None or evaluate_predicate(variant.when, snapshot, context, self.matcher):
                return variant
        return None

    def _resolve(
        self,
        rule: Rule,
        snapshot: PatientSnapshot,
        observations: Sequence[Observation]
    ) -> Optional[Tuple[Dict[str, Any], Any]]:
        """
        Values for all of the rule's metrics plus the date they were recorded,
        or None if any is missing. Observation metrics come from one record.
        """
        if rule.source == "observation":
            obs = resolve_latest(snapshot.patient_id, rule.metrics, observations)
            if obs is None:
                return None
            return {m: obs.value(m) for m in rule.metrics}, obs.collected_at

        values = {m: snapshot.field_value(m) for m in rule.metrics}
        if any(v is None for v in values.values()):
            return None
        date_field = SNAPSHOT_FIELDS.get(rule.metrics[0])
        recorded_on = snapshot.field_value(date_field) if date_field else None
        return values, recorded_on

    def _stale_months(self, rule: Rule, recorded_on: Any, context: PatientContext) -> Optional[int]:
        if rule.max_age_months is None or recorded_on is None:
            return None
        months = months_between(recorded_on, context.as_of)
        if months is not None and months > rule.max_age_months:
            return months
        return None

    def _escalate(
        self,
        rule: Rule,
        outcome: Outcome,
        measured: Dict[str, Any],
        snapshot: PatientSnapshot,
        context: PatientContext
    ) -> Outcome:
        for escalation in rule.escalations:
            if escalation.above is not None:
                if any(
                    metric in measured and bound.crossed(measured[metric])
                    for metric, bound in escalation.above.items()
                ):
                    return escalation.apply(outcome)
            elif evaluate_predicate(escalation.when, snapshot, context, self.matcher):
                return escalation.apply(outcome)
        return outcome

    def _action(
        self,
        indicator: Indicator,
        variant: Optional[ThresholdVariant],
        outcome: Outcome,
        trigger: Trigger,
        snapshot: PatientSnapshot,
        context: PatientContext,
        **values: Any
    ) -> ClinicalAction:
        fields = {name: "unknown" for name in _COMMON_PLACEHOLDERS}
        for metric in indicator.rule.metrics:
            fields[metric] = "unknown"
            fields[f"target_{metric}"] = _fmt(variant.limits.get(metric)) if variant else "unknown"
        fields.update(
            age=_fmt(context.age),
            frailty=_fmt(context.frailty),
            condition_count=_fmt(context.condition_count),
            medication_count=_fmt(context.medication_count),
            risk_min=_fmt(indicator.rule.risk_min),
        )
        fields.update({k: _fmt(v) for k, v in values.items()})

        code = variant.code if variant is not None and variant.code else indicator.code
        return ClinicalAction(
            id=f"{snapshot.patient_id}-{indicator.id}",
            patient_id=snapshot.patient_id,
            indicator_id=indicator.id,
            code=code,
            title=(outcome.title or indicator.name).format_map(fields),
            framework=indicator.framework,
            category=indicator.category,
            priority=outcome.priority,
            trigger=trigger,
            reason=outcome.reason.format_map(fields),
            action_required=outcome.action_required.format_map(fields),
            due_within=outcome.window,
        )

    def _missing(self, indicator, variant, snapshot, context) -> Assessment:
        outcome = indicator.rule.on_missing
        if outcome is None:
            return Assessment(applicable=True, recorded=False)
        action = self._action(indicator, variant, outcome, Trigger.MISSING_DATA, snapshot, context)
        return Assessment(applicable=True, recorded=False, action=action)

    def _stale(self, indicator, variant, snapshot, context, months: int, **values) -> Assessment:
        outcome = indicator.rule.on_stale or indicator.rule.on_missing
        if outcome is None:
            return Assessment(applicable=True, recorded=False)
        action = self._action(indicator, variant, outcome, Trigger.STALE_DATA, snapshot, context, months=months, **values)
        return Assessment(applicable=True, recorded=False, action=action)

    # ==================== Rule kinds ====================

    def _eval_threshold(self, indicator, variant, snapshot, observations, context) -> Assessment:
        rule = indicator.rule
        resolved = self._resolve(rule, snapshot, observations)
        if resolved is None:
            return self._missing(indicator, variant, snapshot, context)

        measured, recorded_on = resolved
        for metric, value in measured.items():
            if not _is_number(value):
                raise InvalidThresholdComparison(indicator.id, metric, value, "number")

        months = self._stale_months(rule, recorded_on, context)
        if months is not None:
            return self._stale(indicator, variant, snapshot, context, months, **measured)

        if all(measured[m] <= variant.limits[m] for m in rule.metrics):
            return Assessment(applicable=True, recorded=True)

        outcome = self._escalate(rule, rule.on_breach, measured, snapshot, context)
        first = rule.metrics[0]
        action = self._action(
            indicator, variant, outcome, Trigger.OUT_OF_TARGET, snapshot, context,
            value=measured[first], **measured
        )
        return Assessment(applicable=True, recorded=True, action=action)

    def _eval_categorical(self, indicator, variant, snapshot, observations, context) -> Assessment:
        rule = indicator.rule
        resolved = self._resolve(rule, snapshot, observations)
        if resolved is None:
            return self._missing(indicator, variant, snapshot, context)

        measured, recorded_on = resolved
        metric = rule.metrics[0]
        value = measured[metric]
        if not isinstance(value, str):
            raise InvalidThresholdComparison(indicator.id, metric, value, "category")

        months = self._stale_months(rule, recorded_on, context)
        if months is not None:
            return self._stale(indicator, variant, snapshot, context, months, value=value)

        if value.lower() in variant.allowed:
            return Assessment(applicable=True, recorded=True)

        outcome = self._escalate(rule, rule.on_breach, {}, snapshot, context)
        action = self._action(indicator, variant, outcome, Trigger.OUT_OF_TARGET, snapshot, context, value=value)
        return Assessment(applicable=True, recorded=True, action=action)

    def _eval_treatment(self, indicator, variant, snapshot, observations, context) -> Assessment:
        rule = indicator.rule
        risk = None
        if rule.risk_field is not None:
            risk = snapshot.field_value(rule.risk_field)
            if risk is None:
                return self._missing(indicator, variant, snapshot, context)
            if not _is_number(risk):
                raise InvalidThresholdComparison(indicator.id, rule.risk_field, risk, "number")
            if risk < rule.risk_min:
                return Assessment(applicable=True, recorded=True)

        if snapshot.medications is None:
            action = self._action(indicator, variant, MEDICATION_LIST_MISSING, Trigger.MISSING_DATA, snapshot, context, risk=risk)
            return Assessment(applicable=True, recorded=False, action=action)

        if self.matcher.matches(snapshot.medications, rule.medications):
            return Assessment(applicable=True, recorded=True)

        outcome = self._escalate(rule, rule.on_breach, {}, snapshot, context)
        action = self._action(indicator, variant, outcome, Trigger.OUT_OF_TARGET, snapshot, context, risk=risk)
        return Assessment(applicable=True, recorded=False, action=action)

    def _eval_review(self, indicator, variant, snapshot, observations, context) -> Assessment:
        rule = indicator.rule
        metric = rule.metrics[0]
        reviewed_on = snapshot.field_value(metric)
        if reviewed_on is None:
            return self._missing(indicator, variant, snapshot, context)
        if not isinstance(reviewed_on, date):
            raise InvalidThresholdComparison(indicator.id, metric, reviewed_on, "date")

        months = months_between(reviewed_on, context.as_of)
        if months <= rule.max_age_months:
            return Assessment(applicable=True, recorded=True)

        outcome = self._escalate(rule, rule.on_breach, {}, snapshot, context)
        action = self._action(
            indicator, variant, outcome, Trigger.OUT_OF_TARGET, snapshot, context,
            months=months, **{metric: reviewed_on}
        )
        return Assessment(applicable=True, recorded=False, action=action)

    def _eval_recorded(self, indicator, variant, snapshot, observations, context) -> Assessment:
        rule = indicator.rule
        resolved = self._resolve(rule, snapshot, observations)
        if resolved is None:
            return self._missing(indicator, variant, snapshot, context)

        measured, recorded_on = resolved
        months = self._stale_months(rule, recorded_on, context)
        if months is not None:
            return self._stale(indicator, variant, snapshot, context, months, **measured)
        return Assessment(applicable=True, recorded=True)

    def _eval_flag(self, indicator, variant, snapshot, observations, context) -> Assessment:
        rule = indicator.rule
        outcome = self._escalate(rule, rule.on_breach, {}, snapshot, context)
        action = self._action(indicator, variant, outcome, Trigger.OUT_OF_TARGET, snapshot, context)
        return Assessment(applicable=True, recorded=None, action=action)


def evaluate_indicator(
    indicator: Indicator,
    snapshot: PatientSnapshot,
    observations: Sequence[Observation] = (),
    as_of: Optional[date] = None,
    matcher: Optional[VocabularyMatcher] = None
) -> Optional[ClinicalAction]:
    """Evaluate a single indicator for one patient with a one-off evaluator."""
    return RuleEvaluator(matcher=matcher, as_of=as_of).evaluate_indicator(indicator, snapshot, observations)
