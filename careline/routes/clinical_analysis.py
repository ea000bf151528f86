"""
=============================================================================
CLINICAL ANALYSIS API ROUTES
=============================================================================

Proactive care actions generated from QOF, NICE, KPI and safety indicators

ENDPOINTS:
    GET  /api/clinical-analysis/actions                        - All actions, most urgent first
    GET  /api/clinical-analysis/patients/{patient_id}/actions  - Actions for one patient
    POST /api/clinical-analysis/tasks                          - Create MediTasks from actions

=============================================================================
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import EVALUATION_WORKERS
from ..db import get_db
from ..services.clinical_analysis import ClinicalAnalysisService, get_catalog
from ..services.clinical_engine import AggregationResult, Category, Framework, Priority, filter_actions
from ..services.patient_store import PatientStore
from ..services.task_service import TaskService, task_to_dict

# ==================== Logging ====================
logger = logging.getLogger(__name__)


# ==================== Services ====================

def get_patient_store(db: Session = Depends(get_db)) -> PatientStore:
    return PatientStore(db)


def get_analysis_service(store: PatientStore = Depends(get_patient_store)) -> ClinicalAnalysisService:
    return ClinicalAnalysisService(store, get_catalog(), max_workers=EVALUATION_WORKERS)


def get_task_service(db: Session = Depends(get_db)) -> TaskService:
    return TaskService(db)


# ==================== Router ====================
router = APIRouter(prefix="/api/clinical-analysis", tags=["Clinical Analysis"])


# ==================== Pydantic Models ====================

class CreateTasksRequest(BaseModel):
    """Request to turn clinical actions into MediTasks."""
    action_ids: List[str] = Field(..., min_length=1, description="Action ids as returned by /actions")
    created_by: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "action_ids": ["2f1c9a4e-7b1d-4c55-9a43-1e0f0c7d8b21-hyp_bp_control"],
                "created_by": "Practice Nurse"
            }
        }


# ==================== Helper Functions ====================

def result_to_response(
    result: AggregationResult,
    catalog_version: str,
    priority: Optional[Priority] = None,
    category: Optional[Category] = None,
    framework: Optional[Framework] = None,
    limit: Optional[int] = None
) -> Dict[str, Any]:
    """Actions are filtered for display; stats always describe the full run."""
    actions = filter_actions(result.actions, priority=priority, category=category, framework=framework)
    if limit is not None:
        actions = actions[:limit]
    return {
        "success": True,
        "catalog_version": catalog_version,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "count": len(actions),
        "actions": [a.to_record() for a in actions],
        "stats": result.stats.to_record(),
        "partial": result.partial,
        "skipped": [s.to_record() for s in result.skipped],
    }


# ==================== Endpoints ====================

@router.get("/actions")
async def list_actions(
    priority: Optional[Priority] = Query(None, description="critical, high, medium or low"),
    category: Optional[Category] = Query(None),
    framework: Optional[Framework] = Query(None, description="QOF, NICE, KPI or Safety"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    service: ClinicalAnalysisService = Depends(get_analysis_service)
):
    """
    Evaluate every patient against the active catalog.
    Actions are sorted critical -> high -> medium -> low.
    """
    try:
        result = await service.analyze_all()
        return result_to_response(result, service.catalog.version, priority, category, framework, limit)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Clinical analysis failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/patients/{patient_id}/actions")
async def patient_actions(
    patient_id: str,
    service: ClinicalAnalysisService = Depends(get_analysis_service)
):
    """Actions for a single patient."""
    try:
        result = await service.analyze_patient(patient_id)
        if result is None:
            raise HTTPException(status_code=404, detail=f"Patient {patient_id} not found")
        response = result_to_response(result, service.catalog.version)
        response["patient_id"] = patient_id
        return response
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Clinical analysis failed for patient {patient_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/tasks")
async def create_tasks(
    request: CreateTasksRequest,
    service: ClinicalAnalysisService = Depends(get_analysis_service),
    tasks: TaskService = Depends(get_task_service)
):
    """
    Create MediTasks for the selected actions.

    Actions are re-evaluated first, so ids whose finding has since been
    resolved are reported under `not_found` instead of creating stale tasks.
    An open task for the same patient and indicator is never duplicated.
    """
    try:
        actions, missing = await service.find_actions(request.action_ids)
        if not actions and missing:
            raise HTTPException(status_code=404, detail=f"No outstanding actions match: {', '.join(missing)}")

        created = await tasks.create_tasks(actions, created_by=request.created_by)
        return {
            "success": True,
            "created": [task_to_dict(t) for t in created.created],
            "already_open": [task_to_dict(t) for t in created.existing],
            "not_found": missing,
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Task creation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
