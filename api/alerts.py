"""
Alert, inventory and job API Endpoints

職責：
1. 查詢待送出的通知、標記已讀
2. 庫存建立與增減（低庫存時通知管理員）
3. 手動觸發背景排程（in-process 計時器關閉時，由外部 cron 呼叫 POST /api/jobs/{name}/run）
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    AlertResponse,
    InventoryAdjust,
    InventoryItemCreate,
    InventoryItemResponse,
    JobRunResponse,
)
from core.alert_manager import AlertManager, InventoryManager
from core.exceptions import NotFound, ValidationFailed
from core.scheduler import JobScheduler, get_scheduler
from services.alert_service import pending_alerts

router = APIRouter(prefix="/api", tags=["alerts"])
logger = logging.getLogger(__name__)


@router.get("/alerts", response_model=List[AlertResponse])
def list_pending_alerts(
    user_id: Optional[int] = None,
    role: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """尚未送出且已到期的通知（is_sent=False），優先度高者在前"""
    return pending_alerts(db, user_id=user_id, role=role)


@router.post("/alerts/{alert_id}/read", response_model=AlertResponse)
def mark_alert_read(alert_id: int, db: Session = Depends(get_db)):
    try:
        return AlertManager.mark_read(db, alert_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Alert not found")


@router.post("/inventory", response_model=InventoryItemResponse, status_code=201)
def create_inventory_item(data: InventoryItemCreate, db: Session = Depends(get_db)):
    try:
        return InventoryManager.create_item(db, **data.model_dump())
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/inventory/{item_id}/adjust", response_model=InventoryItemResponse)
def adjust_inventory(item_id: int, data: InventoryAdjust, db: Session = Depends(get_db)):
    try:
        return InventoryManager.adjust_quantity(db, item_id, data.delta)
    except NotFound:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to adjust item {item_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/jobs/{name}/run", response_model=JobRunResponse)
def run_job(name: str, scheduler: JobScheduler = Depends(get_scheduler)):
    """
    執行一次背景排程

    返回執行結果：
    - ok：完成並 commit
    - skipped：上一次執行尚未結束
    - timeout / failed：已 rollback
    """
    if name not in scheduler.jobs:
        raise HTTPException(status_code=404, detail=f"Unknown job {name}")
    return scheduler.run_job(name)._asdict()
