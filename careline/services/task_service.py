"""
Task Service
Turns selected clinical actions into MediTask to-dos for the care team
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..models import MediTask
from .clinical_engine import ClinicalAction, Priority

logger = logging.getLogger(__name__)

# MediTask uses the practice's own priority scale
TASK_PRIORITY = {
    Priority.CRITICAL: "urgent",
    Priority.HIGH: "high",
    Priority.MEDIUM: "normal",
    Priority.LOW: "low",
}

_UNIT_DAYS = {"day": 1, "week": 7, "month": 30}
_WINDOW = re.compile(r"^(\d+) (hour|day|week|month)s?$")


def due_delta(due_within: str) -> timedelta:
    """'24 hours' -> 1 day, '2 weeks' -> 14 days; a month counts as 30 days."""
    match = _WINDOW.match(due_within)
    if not match:
        raise ValueError(f"Unrecognised due window: {due_within!r}")
    amount, unit = int(match.group(1)), match.group(2)
    if unit == "hour":
        return timedelta(hours=amount)
    return timedelta(days=amount * _UNIT_DAYS[unit])


def task_to_dict(task: MediTask) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "patient_id": task.patient_id,
        "indicator_id": task.indicator_id,
        "indicator_code": task.indicator_code,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "created_by": task.created_by,
        "created_at": task.created_at.isoformat() if task.created_at else None,
    }


@dataclass
class TaskCreationResult:
    created: List[MediTask] = field(default_factory=list)
    existing: List[MediTask] = field(default_factory=list)


class TaskService:
    """
    Persists clinical actions as MediTask records.
    At most one open task exists per (patient, indicator).
    """

    def __init__(self, db: Session):
        self.db = db

    def find_open_task(self, patient_id: str, indicator_id: str) -> Optional[MediTask]:
        return (
            self.db.query(MediTask)
            .filter(
                MediTask.patient_id == patient_id,
                MediTask.indicator_id == indicator_id,
                MediTask.status != "completed",
            )
            .first()
        )

    async def create_tasks(
        self,
        actions: Sequence[ClinicalAction],
        created_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> TaskCreationResult:
        """
        Create a task per action unless an open one already exists.

        Args:
            actions: Actions selected by the user
            created_by: Who requested the tasks
            now: Reference time for due dates (defaults to current UTC time)

        Returns:
            TaskCreationResult with the new and the already-open tasks
        """
        now = now or datetime.now(timezone.utc)
        result = TaskCreationResult()
        seen = set()

        for action in actions:
            if action.key in seen:
                continue
            seen.add(action.key)

            existing = self.find_open_task(action.patient_id, action.indicator_id)
            if existing is not None:
                result.existing.append(existing)
                continue

            task = MediTask(
                title=f"{action.code}: {action.title}",
                description=f"{action.reason}\n\nAction: {action.action_required}",
                status="pending",
                priority=TASK_PRIORITY[action.priority],
                patient_id=action.patient_id,
                indicator_id=action.indicator_id,
                indicator_code=action.code,
                due_date=now + due_delta(action.due_within),
                created_by=created_by or "clinical-analysis",
            )
            self.db.add(task)
            result.created.append(task)

        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create tasks: {e}")
            raise

        for task in result.created:
            self.db.refresh(task)

        logger.info(f"✅ Created {len(result.created)} tasks ({len(result.existing)} already open)")
        return result
