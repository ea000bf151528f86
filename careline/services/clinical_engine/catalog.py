"""
Indicator Catalog
Declarative, versioned table of clinical quality indicators (QOF, NICE, KPI, Safety)

Each indicator couples an applicability predicate (who the indicator is about)
with a rule (what must be true for that patient) and the outcomes to emit when
it is not. Catalogs are loaded from plain dicts or JSON so they can be
versioned and hot-reloaded; a malformed entry rejects the whole catalog.
"""
import json
import logging
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from string import Formatter
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import CatalogLoadError
from .snapshot import OBSERVATION_METRICS, SNAPSHOT_FIELDS

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Total order used for sorting actions: most urgent first
PRIORITY_ORDER: Tuple[Priority, ...] = (Priority.CRITICAL, Priority.HIGH, Priority.MEDIUM, Priority.LOW)
_PRIORITY_RANK = {p: rank for rank, p in enumerate(PRIORITY_ORDER)}


def priority_rank(priority: Union[Priority, str]) -> int:
    """Ordinal of a priority: critical=0, high=1, medium=2, low=3."""
    return _PRIORITY_RANK[Priority(priority)]


DEFAULT_DUE_WITHIN = {
    Priority.CRITICAL: "24 hours",
    Priority.HIGH: "7 days",
    Priority.MEDIUM: "1 month",
    Priority.LOW: "3 months",
}

_DUE_WITHIN_PATTERN = re.compile(r"^\d+ (hour|day|week|month)s?$")


class Category(str, Enum):
    CARDIOVASCULAR = "cardiovascular"
    DIABETES = "diabetes"
    RESPIRATORY = "respiratory"
    MENTAL_HEALTH = "mental_health"
    HEART_FAILURE = "heart_failure"
    PREVENTIVE_CARE = "preventive_care"
    LIFESTYLE = "lifestyle"
    SAFETY = "safety"


class Framework(str, Enum):
    QOF = "QOF"
    NICE = "NICE"
    KPI = "KPI"
    SAFETY = "Safety"


class RuleKind(str, Enum):
    THRESHOLD = "threshold"      # numeric value(s) must be <= limit
    CATEGORICAL = "categorical"  # value must be one of the allowed categories
    TREATMENT = "treatment"      # patient must be on a medication class
    REVIEW = "review"            # a review date must be recent enough
    RECORDED = "recorded"        # a metric must have been recorded
    FLAG = "flag"                # applicability alone is the finding


_COMMON_PLACEHOLDERS = {"age", "frailty", "condition_count", "medication_count", "months", "value", "risk", "risk_min"}


def _check_due_within(value: Optional[str]) -> Optional[str]:
    if value is not None and not _DUE_WITHIN_PATTERN.match(value):
        raise ValueError(f"due_within '{value}' must look like '7 days' or '24 hours'")
    return value


# ==================== Predicates ====================

PREDICATE_OPERATORS = (
    "all_of", "any_of", "none_of",
    "condition", "medication",
    "age_gte", "age_lt", "frailty_in",
    "condition_count_gte", "medication_count_gte",
    "field_present",
)


class Predicate(BaseModel):
    """
    One node of an applicability rule. Exactly one operator is set, e.g.
    {"condition": ["Hypertension"]} or {"all_of": [{...}, {...}]}.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    all_of: Optional[Tuple["Predicate", ...]] = None
    any_of: Optional[Tuple["Predicate", ...]] = None
    none_of: Optional[Tuple["Predicate", ...]] = None
    condition: Optional[Tuple[str, ...]] = None
    medication: Optional[Tuple[str, ...]] = None
    age_gte: Optional[int] = None
    age_lt: Optional[int] = None
    frailty_in: Optional[Tuple[str, ...]] = None
    condition_count_gte: Optional[int] = None
    medication_count_gte: Optional[int] = None
    field_present: Optional[str] = None

    @field_validator("frailty_in")
    @classmethod
    def _lower_frailty(cls, value):
        return tuple(v.lower() for v in value) if value is not None else value

    @model_validator(mode="after")
    def _exactly_one_operator(self):
        ops = [name for name in PREDICATE_OPERATORS if getattr(self, name) is not None]
        if len(ops) != 1:
            raise ValueError(f"predicate must set exactly one operator, got {ops or 'none'}")
        if self.field_present is not None and self.field_present not in SNAPSHOT_FIELDS:
            raise ValueError(f"unknown snapshot field '{self.field_present}'")
        for name in ("all_of", "any_of", "none_of", "condition", "medication", "frailty_in"):
            value = getattr(self, name)
            if value is not None and len(value) == 0:
                raise ValueError(f"'{name}' must not be empty")
        return self

    @property
    def operator(self) -> Tuple[str, Any]:
        for name in PREDICATE_OPERATORS:
            value = getattr(self, name)
            if value is not None:
                return name, value
        raise AssertionError("validated predicate has no operator")


Predicate.model_rebuild()


# ==================== Rules ====================

class Bound(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    op: Literal["gt", "gte"]
    value: float

    def crossed(self, measured: float) -> bool:
        return measured > self.value if self.op == "gt" else measured >= self.value


class Outcome(BaseModel):
    """What to emit when a rule is not met."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    priority: Priority
    reason: str
    action_required: str
    due_within: Optional[str] = None
    title: Optional[str] = None

    @field_validator("due_within")
    @classmethod
    def _valid_window(cls, value):
        return _check_due_within(value)

    @property
    def window(self) -> str:
        return self.due_within or DEFAULT_DUE_WITHIN[self.priority]


class Escalation(BaseModel):
    """
    Raises a breach outcome when any metric crosses its bound (`above`) or a
    predicate on the patient holds (`when`). First matching escalation wins.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    above: Optional[Dict[str, Bound]] = None
    when: Optional[Predicate] = None
    priority: Priority
    due_within: Optional[str] = None
    reason: Optional[str] = None
    action_required: Optional[str] = None
    title: Optional[str] = None

    @field_validator("due_within")
    @classmethod
    def _valid_window(cls, value):
        return _check_due_within(value)

    @model_validator(mode="after")
    def _one_trigger(self):
        if (self.above is None) == (self.when is None):
            raise ValueError("escalation needs exactly one of 'above' or 'when'")
        if self.above is not None and not self.above:
            raise ValueError("'above' must name at least one metric")
        return self

    def apply(self, base: Outcome) -> Outcome:
        return Outcome(
            priority=self.priority,
            due_within=self.due_within,
            reason=self.reason or base.reason,
            action_required=self.action_required or base.action_required,
            title=self.title or base.title,
        )


class ThresholdVariant(BaseModel):
    """
    Target selected for a patient before comparison. The first variant whose
    `when` holds (or that has no `when`) is used; `code` overrides the
    indicator's code for actions raised under this variant.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    when: Optional[Predicate] = None
    code: Optional[str] = None
    limits: Dict[str, float] = Field(default_factory=dict)
    allowed: Optional[Tuple[str, ...]] = None

    @field_validator("allowed")
    @classmethod
    def _lower_allowed(cls, value):
        return tuple(v.lower() for v in value) if value is not None else value


class Rule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: RuleKind
    source: Literal["observation", "snapshot"] = "snapshot"
    metrics: Tuple[str, ...] = ()
    variants: Tuple[ThresholdVariant, ...] = ()
    medications: Tuple[str, ...] = ()
    risk_field: Optional[str] = None
    risk_min: Optional[float] = None
    max_age_months: Optional[int] = Field(default=None, ge=1)
    on_missing: Optional[Outcome] = None
    on_stale: Optional[Outcome] = None
    on_breach: Optional[Outcome] = None
    escalations: Tuple[Escalation, ...] = ()

    @model_validator(mode="after")
    def _consistent_for_kind(self):
        known = OBSERVATION_METRICS if self.source == "observation" else set(SNAPSHOT_FIELDS)
        for metric in self.metrics:
            if metric not in known:
                raise ValueError(f"unknown {self.source} metric '{metric}'")

        kind = self.kind
        if kind in (RuleKind.THRESHOLD, RuleKind.CATEGORICAL, RuleKind.RECORDED, RuleKind.REVIEW) and not self.metrics:
            raise ValueError(f"{kind.value} rule needs at least one metric")
        if kind in (RuleKind.CATEGORICAL, RuleKind.REVIEW) and len(self.metrics) != 1:
            raise ValueError(f"{kind.value} rule takes exactly one metric")
        if kind is RuleKind.REVIEW and (self.source != "snapshot" or self.max_age_months is None):
            raise ValueError("review rule needs a snapshot date field and max_age_months")

        if kind is RuleKind.RECORDED:
            if self.on_missing is None:
                raise ValueError("recorded rule needs on_missing")
        elif self.on_breach is None:
            raise ValueError(f"{kind.value} rule needs on_breach")

        if kind in (RuleKind.THRESHOLD, RuleKind.REVIEW) and self.on_missing is None:
            raise ValueError(f"{kind.value} rule needs on_missing")

        if kind is RuleKind.THRESHOLD:
            if not self.variants:
                raise ValueError("threshold rule needs at least one variant")
            for variant in self.variants:
                if set(variant.limits) != set(self.metrics):
                    raise ValueError(f"variant limits {sorted(variant.limits)} must cover metrics {list(self.metrics)}")
        if kind is RuleKind.CATEGORICAL:
            if not self.variants or any(not v.allowed for v in self.variants):
                raise ValueError("categorical rule needs variants with allowed values")
        if self.variants and self.variants[-1].when is not None:
            raise ValueError("last variant must be the default (no 'when')")

        if kind is RuleKind.TREATMENT:
            if not self.medications:
                raise ValueError("treatment rule needs medications")
            if self.risk_field is not None:
                if self.risk_field not in SNAPSHOT_FIELDS or self.risk_min is None:
                    raise ValueError("risk_field must be a snapshot field and needs risk_min")
                if self.on_missing is None:
                    raise ValueError("treatment rule with risk_field needs on_missing")

        for escalation in self.escalations:
            if escalation.above is not None:
                if kind is not RuleKind.THRESHOLD:
                    raise ValueError("'above' escalations only apply to threshold rules")
                unknown = set(escalation.above) - set(self.metrics)
                if unknown:
                    raise ValueError(f"escalation references metrics not in rule: {sorted(unknown)}")
        return self

    def outcomes(self) -> Iterator[Tuple[str, Optional[str]]]:
        """Every (reason/action/title) template in the rule, for placeholder checks."""
        for outcome in (self.on_missing, self.on_stale, self.on_breach):
            if outcome is not None:
                yield from (("reason", outcome.reason), ("action_required", outcome.action_required), ("title", outcome.title))
        for escalation in self.escalations:
            yield from (("reason", escalation.reason), ("action_required", escalation.action_required), ("title", escalation.title))


class Indicator(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., pattern=r"^[a-z0-9_]+$")
    code: str = Field(..., min_length=1)
    name: str
    description: str = ""
    category: Category
    framework: Framework = Framework.QOF
    read_code: Optional[str] = None
    snomed_code: Optional[str] = None
    target_percent: int = Field(..., ge=0, le=100)
    applicability: Predicate
    rule: Rule

    @property
    def measures_coverage(self) -> bool:
        """Flag indicators have no recorded metric, so they earn no coverage."""
        return self.rule.kind is not RuleKind.FLAG

    @model_validator(mode="after")
    def _known_placeholders(self):
        allowed = set(_COMMON_PLACEHOLDERS)
        allowed.update(self.rule.metrics)
        allowed.update(f"target_{m}" for m in self.rule.metrics)
        for label, template in self.rule.outcomes():
            if template is None:
                continue
            try:
                fields = [(f, spec, conv) for _, f, spec, conv in Formatter().parse(template) if f is not None]
            except ValueError as e:
                raise ValueError(f"{label} template {template!r} is malformed: {e}")
            # Values are substituted as preformatted text
            for name, spec, conversion in fields:
                if not name or spec or conversion:
                    raise ValueError(
                        f"{label} template {template!r}: placeholders must be plain names like {{value}}"
                    )
            unknown = {name for name, _, _ in fields} - allowed
            if unknown:
                raise ValueError(f"{label} template uses unknown placeholders {sorted(unknown)}")
        return self


# ==================== Catalog ====================

class IndicatorCatalog:
    """
    Immutable, versioned set of indicators, passed explicitly to the evaluator
    and aggregator.
    """

    def __init__(self, indicators: Iterable[Indicator], version: str = "unversioned"):
        items = tuple(indicators)
        by_id: Dict[str, Indicator] = {}
        duplicates = []
        for indicator in items:
            if indicator.id in by_id:
                duplicates.append(indicator.id)
            by_id[indicator.id] = indicator
        if duplicates:
            raise CatalogLoadError("Duplicate indicator ids", [f"duplicate id '{d}'" for d in duplicates])

        self._items = items
        self._by_id = by_id
        self._version = version

    @property
    def version(self) -> str:
        return self._version

    def __iter__(self) -> Iterator[Indicator]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, indicator_id: object) -> bool:
        return indicator_id in self._by_id

    def get(self, indicator_id: str) -> Indicator:
        return self._by_id[indicator_id]

    def find(self, indicator_id: str) -> Optional[Indicator]:
        return self._by_id.get(indicator_id)

    def by_code(self, code: str) -> List[Indicator]:
        """All indicators answering to `code`, including variant codes."""
        code = code.upper()
        return [
            i for i in self._items
            if i.code.upper() == code or any((v.code or "").upper() == code for v in i.rule.variants)
        ]

    def by_category(self, category: Union[Category, str]) -> List[Indicator]:
        category = Category(category)
        return [i for i in self._items if i.category is category]

    def __repr__(self) -> str:
        return f"IndicatorCatalog(version={self._version!r}, indicators={len(self._items)})"


def _read_source(path: Path) -> Tuple[Sequence[Any], Optional[str]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise CatalogLoadError(f"Catalog file not found: {path}")
    except json.JSONDecodeError as e:
        raise CatalogLoadError(f"Invalid JSON in catalog {path}", [str(e)])

    if isinstance(data, dict):
        return data.get("indicators", []), data.get("version")
    return data, None


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<entry>"
        parts.append(f"{loc}: {err.get('msg')}")
    return ", ".join(parts)


def load_catalog(
    source: Union[str, Path, Sequence[Dict[str, Any]]],
    version: Optional[str] = None
) -> IndicatorCatalog:
    """
    Build a catalog from a list of indicator dicts or a JSON file
    (either a bare list or {"version": ..., "indicators": [...]}).

    Raises CatalogLoadError if any entry is malformed or an id repeats.
    """
    file_version = None
    if isinstance(source, (str, Path)):
        entries, file_version = _read_source(Path(source))
    else:
        entries = source

    if not isinstance(entries, (list, tuple)):
        raise CatalogLoadError("Catalog must be a list of indicators")

    problems: List[str] = []
    indicators: List[Indicator] = []
    seen: Dict[str, int] = {}
    for idx, entry in enumerate(entries):
        label = entry.get("id", "?") if isinstance(entry, dict) else "?"
        try:
            indicator = Indicator.model_validate(entry)
        except ValidationError as e:
            problems.append(f"entry {idx} ({label}): {_describe(e)}")
            continue
        if indicator.id in seen:
            problems.append(f"entry {idx} ({label}): duplicate id, first defined at entry {seen[indicator.id]}")
            continue
        seen[indicator.id] = idx
        indicators.append(indicator)

    if problems:
        logger.error(f"Rejected indicator catalog with {len(problems)} problem(s)")
        raise CatalogLoadError("Invalid indicator catalog", problems)

    catalog = IndicatorCatalog(indicators, version=version or file_version or "unversioned")
    logger.info(f"Loaded indicator catalog {catalog.version} ({len(catalog)} indicators)")
    return catalog


@lru_cache(maxsize=1)
def default_catalog() -> IndicatorCatalog:
    """The built-in QOF catalog shipped with the package."""
    from .indicators import CATALOG_VERSION, QOF_INDICATORS
    return load_catalog(QOF_INDICATORS, version=CATALOG_VERSION)
