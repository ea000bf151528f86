"""
Applicability predicates evaluated against a patient snapshot.
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .catalog import Predicate
from .snapshot import PatientSnapshot, age_on
from .vocabulary import VocabularyMatcher


@dataclass(frozen=True)
class PatientContext:
    """
    Derived facts read once per patient per evaluation run, so every indicator
    sees the same age and frailty.
    """
    as_of: date
    age: Optional[int]
    frailty: Optional[str]
    condition_count: Optional[int]
    medication_count: Optional[int]

    @classmethod
    def from_snapshot(cls, snapshot: PatientSnapshot, as_of: date) -> "PatientContext":
        return cls(
            as_of=as_of,
            age=age_on(snapshot.date_of_birth, as_of),
            frailty=snapshot.frailty_status,
            condition_count=len(snapshot.conditions) if snapshot.conditions is not None else None,
            medication_count=len(snapshot.medications) if snapshot.medications is not None else None,
        )


def evaluate_predicate(
    predicate: Predicate,
    snapshot: PatientSnapshot,
    context: PatientContext,
    matcher: VocabularyMatcher
) -> bool:
    """
    True when the predicate holds. Unknown inputs (no DOB, no frailty
    assessment, no condition list) never satisfy a leaf.
    """
    op, arg = predicate.operator

    if op == "all_of":
        return all(evaluate_predicate(p, snapshot, context, matcher) for p in arg)
    if op == "any_of":
        return any(evaluate_predicate(p, snapshot, context, matcher) for p in arg)
    if op == "none_of":
        return not any(evaluate_predicate(p, snapshot, context, matcher) for p in arg)

    if op == "condition":
        return matcher.matches(snapshot.conditions, arg)
    if op == "medication":
        return matcher.matches(snapshot.medications, arg)

    if op == "age_gte":
        return context.age is not None and context.age >= arg
    if op == "age_lt":
        return context.age is not None and context.age < arg
    if op == "frailty_in":
        return context.frailty is not None and context.frailty in arg

    if op == "condition_count_gte":
        return context.condition_count is not None and context.condition_count >= arg
    if op == "medication_count_gte":
        return context.medication_count is not None and context.medication_count >= arg

    if op == "field_present":
        return snapshot.field_value(arg) is not None

    raise ValueError(f"Unsupported predicate operator: {op}")
