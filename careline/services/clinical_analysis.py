"""
Clinical Analysis Service
Runs the indicator catalog over the practice population and reports
proactive care actions and QOF coverage.

Holds the active indicator catalog, which can be hot-reloaded from
QOF_CATALOG_PATH without restarting the API.
"""
import logging
import threading
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import QOF_CATALOG_PATH, QOF_CATALOG_VERSION
from .clinical_engine import (
    ActionAggregator,
    AggregationResult,
    ClinicalAction,
    CoverageSummary,
    IndicatorCatalog,
    InvalidThresholdComparison,
    RuleEvaluator,
    calculate_coverage,
    default_catalog,
    load_catalog,
    measure_population,
    summarize_coverage,
)
from .clinical_engine.resolver import group_by_patient
from .patient_store import PatientStore

logger = logging.getLogger(__name__)


# ==================== Catalog Holder ====================

_catalog: Optional[IndicatorCatalog] = None
_catalog_lock = threading.Lock()


def _load_configured_catalog() -> IndicatorCatalog:
    if QOF_CATALOG_PATH:
        return load_catalog(QOF_CATALOG_PATH, version=QOF_CATALOG_VERSION or None)
    return default_catalog()


def get_catalog() -> IndicatorCatalog:
    """The active catalog, loaded on first use."""
    global _catalog
    with _catalog_lock:
        if _catalog is None:
            _catalog = _load_configured_catalog()
        return _catalog


def set_catalog(catalog: IndicatorCatalog) -> IndicatorCatalog:
    global _catalog
    with _catalog_lock:
        _catalog = catalog
    return catalog


def reload_catalog() -> IndicatorCatalog:
    """
    Reload the configured catalog.

    Raises CatalogLoadError if the new catalog is invalid; the previously
    active catalog stays in place.
    """
    try:
        catalog = _load_configured_catalog()
    except Exception as e:
        logger.error(f"❌ Catalog reload failed, keeping {_catalog.version if _catalog else 'none'}: {e}")
        raise
    logger.info(f"🔄 Catalog reloaded: {catalog.version} ({len(catalog)} indicators)")
    return set_catalog(catalog)


# ==================== Analysis ====================

def split_action_id(action_id: str) -> Tuple[str, str]:
    """Action ids are '<patient_id>-<indicator_id>'; indicator ids never contain '-'."""
    patient_id, _, indicator_id = action_id.rpartition("-")
    return patient_id, indicator_id


class ClinicalAnalysisService:
    """
    Loads patients from the store, then runs the pure clinical engine.
    """

    def __init__(
        self,
        store: PatientStore,
        catalog: IndicatorCatalog,
        max_workers: int = 1,
        as_of: Optional[date] = None
    ):
        self.store = store
        self.catalog = catalog
        self.evaluator = RuleEvaluator(as_of=as_of)
        self.aggregator = ActionAggregator(catalog, self.evaluator, max_workers=max_workers)

    async def analyze_all(self) -> AggregationResult:
        """
        Evaluate every indicator for every patient.

        Returns:
            AggregationResult with actions sorted most urgent first
        """
        patients = await self.store.get_snapshots()
        observations = await self.store.get_observations()
        return self.aggregator.aggregate(patients, observations)

    async def analyze_patients(self, patient_ids: Iterable[str]) -> AggregationResult:
        ids = list(dict.fromkeys(str(p) for p in patient_ids))
        patients = await self.store.get_snapshots(ids)
        observations = await self.store.get_observations(ids)
        return self.aggregator.aggregate(patients, observations)

    async def analyze_patient(self, patient_id: str) -> Optional[AggregationResult]:
        """
        Evaluate one patient.

        Returns:
            AggregationResult, or None if the patient does not exist
        """
        snapshot = await self.store.get_snapshot(patient_id)
        if snapshot is None:
            return None
        observations = await self.store.get_observations([snapshot.patient_id])
        return self.aggregator.aggregate([snapshot], observations)

    async def find_actions(self, action_ids: Iterable[str]) -> Tuple[List[ClinicalAction], List[str]]:
        """
        Re-evaluate the patients behind `action_ids` and return the actions
        that are still outstanding, plus the ids that no longer apply.
        """
        action_ids = list(dict.fromkeys(action_ids))
        result = await self.analyze_patients(split_action_id(a)[0] for a in action_ids)
        by_id: Dict[str, ClinicalAction] = {a.id: a for a in result.actions}
        found = [by_id[a] for a in action_ids if a in by_id]
        missing = [a for a in action_ids if a not in by_id]
        return found, missing

    async def coverage_report(self) -> CoverageSummary:
        """
        QOF coverage for every indicator in the catalog.

        Flag indicators have no coverage and are not scored. An indicator that
        cannot be evaluated for some patient is left out of the report and logged.
        """
        patients = await self.store.get_snapshots()
        observations = group_by_patient(await self.store.get_observations())

        results = []
        for indicator in self.catalog:
            if not indicator.measures_coverage:
                continue
            try:
                recorded, eligible = measure_population(indicator, patients, observations, self.evaluator)
            except InvalidThresholdComparison as e:
                logger.warning(f"⚠️ Coverage skipped for {indicator.id}: {e}")
                continue
            results.append(calculate_coverage(indicator, recorded, eligible))

        summary = summarize_coverage(results)
        logger.info(f"📊 QOF coverage: score {summary.score}% ({summary.rating}) over {len(results)} indicators")
        return summary
