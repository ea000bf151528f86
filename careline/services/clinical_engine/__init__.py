"""
Clinical Engine
Indicator catalog, rule evaluation, action aggregation and QOF coverage.
Pure computation: callers fetch snapshots and observations first.
"""
from .catalog import (
    Category,
    Framework,
    Indicator,
    IndicatorCatalog,
    Priority,
    PRIORITY_ORDER,
    default_catalog,
    load_catalog,
    priority_rank,
)
from .errors import CatalogLoadError, ClinicalEngineError, InvalidThresholdComparison
from .snapshot import MetricType, Observation, PatientSnapshot
from .vocabulary import SubstringMatcher, VocabularyMatcher
from .resolver import resolve_latest
from .evaluator import Assessment, ClinicalAction, RuleEvaluator, Trigger, evaluate_indicator
from .aggregator import ActionAggregator, AggregationResult, SkippedEvaluation, filter_actions, merge
from .coverage import CoverageResult, CoverageSummary, calculate_coverage, measure_population, summarize_coverage

__all__ = [
    'Category', 'Framework', 'Indicator', 'IndicatorCatalog', 'Priority', 'PRIORITY_ORDER',
    'default_catalog', 'load_catalog', 'priority_rank',
    'CatalogLoadError', 'ClinicalEngineError', 'InvalidThresholdComparison',
    'MetricType', 'Observation', 'PatientSnapshot',
    'SubstringMatcher', 'VocabularyMatcher', 'resolve_latest',
    'Assessment', 'ClinicalAction', 'RuleEvaluator', 'Trigger', 'evaluate_indicator',
    'ActionAggregator', 'AggregationResult', 'SkippedEvaluation', 'filter_actions', 'merge',
    'CoverageResult', 'CoverageSummary', 'calculate_coverage', 'measure_population', 'summarize_coverage',
]
