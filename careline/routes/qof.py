"""
=============================================================================
QOF API ROUTES
=============================================================================

Indicator catalog and practice-level QOF coverage

ENDPOINTS:
    GET  /api/qof/indicators      - Active indicator catalog
    GET  /api/qof/coverage        - Coverage and points per indicator
    POST /api/qof/catalog/reload  - Hot-reload the catalog from QOF_CATALOG_PATH

=============================================================================
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..services.clinical_analysis import ClinicalAnalysisService, get_catalog, reload_catalog
from ..services.clinical_engine import CatalogLoadError, Category, Framework, Indicator
from .clinical_analysis import get_analysis_service

# ==================== Logging ====================
logger = logging.getLogger(__name__)

# ==================== Router ====================
router = APIRouter(prefix="/api/qof", tags=["QOF"])


# ==================== Helper Functions ====================

def indicator_to_dict(indicator: Indicator) -> Dict[str, Any]:
    return {
        "id": indicator.id,
        "code": indicator.code,
        "variant_codes": [v.code for v in indicator.rule.variants if v.code],
        "name": indicator.name,
        "description": indicator.description,
        "category": indicator.category.value,
        "framework": indicator.framework.value,
        "read_code": indicator.read_code,
        "snomed_code": indicator.snomed_code,
        "target_percent": indicator.target_percent,
        "rule_kind": indicator.rule.kind.value,
        "measures_coverage": indicator.measures_coverage,
    }


# ==================== Endpoints ====================

@router.get("/indicators")
async def list_indicators(
    category: Optional[Category] = Query(None),
    framework: Optional[Framework] = Query(None),
):
    """List indicators in the active catalog."""
    catalog = get_catalog()
    indicators = [
        i for i in catalog
        if (category is None or i.category is category) and (framework is None or i.framework is framework)
    ]
    return {
        "catalog_version": catalog.version,
        "count": len(indicators),
        "indicators": [indicator_to_dict(i) for i in indicators],
    }


@router.get("/coverage")
async def coverage(service: ClinicalAnalysisService = Depends(get_analysis_service)):
    """
    Percent of eligible patients with each indicator's data recorded,
    with status (good/warning/poor), points earned and gap to target.
    """
    try:
        summary = await service.coverage_report()
        return {
            "success": True,
            "catalog_version": service.catalog.version,
            **summary.to_record(),
        }
    except Exception as e:
        logger.error(f"Coverage report failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/catalog/reload")
async def reload():
    """
    Reload the indicator catalog. An invalid catalog is rejected as a whole
    and the current one stays active.
    """
    try:
        catalog = reload_catalog()
    except CatalogLoadError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": "Invalid indicator catalog", "problems": e.problems or [str(e)]},
        )
    return {
        "success": True,
        "catalog_version": catalog.version,
        "indicators": len(catalog),
    }
