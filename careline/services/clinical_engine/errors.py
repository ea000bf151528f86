"""
Clinical engine exceptions
"""
from typing import Any, List, Optional


class ClinicalEngineError(Exception):
    """Base class for errors raised by the clinical engine."""


class CatalogLoadError(ClinicalEngineError):
    """
    Raised when an indicator catalog cannot be loaded.

    The whole catalog is rejected; `problems` lists every malformed entry found
    so the caller can fix them in one pass.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        detail = message
        if self.problems:
            detail = f"{message}: " + "; ".join(self.problems)
        super().__init__(detail)


class InvalidThresholdComparison(ClinicalEngineError):
    """
    Raised when an indicator's rule cannot be compared with the resolved value,
    e.g. a numeric threshold applied to a categorical field.
    """

    def __init__(self, indicator_id: str, metric: str, value: Any, expected: str):
        self.indicator_id = indicator_id
        self.metric = metric
        self.value = value
        self.expected = expected
        super().__init__(
            f"{indicator_id}: cannot compare {metric}={value!r} "
            f"({type(value).__name__}) as {expected}"
        )
