"""
Event API Endpoints

職責：
1. 建立活動並推進其生命週期
2. 發布活動（同時建立預設回合）
3. 查詢活動、回合與回合進度
4. 排程活動提醒
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    AlertResponse,
    EventCreate,
    EventResponse,
    EventTransition,
    RoundProgressResponse,
    RoundResponse,
    RoundTransition,
)
from core.alert_manager import AlertManager
from core.event_manager import EventManager
from core.exceptions import Conflict, InvalidStateTransition, NotFound, ValidationFailed

router = APIRouter(prefix="/api", tags=["events"])
logger = logging.getLogger(__name__)


@router.post("/events", response_model=EventResponse, status_code=201)
def create_event(event_data: EventCreate, db: Session = Depends(get_db)):
    """建立活動（狀態一律為 Draft）"""
    try:
        return EventManager.create_event(db, **event_data.model_dump())
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create event: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: int, db: Session = Depends(get_db)):
    try:
        return EventManager.get_event(db, event_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")


@router.post("/events/{event_id}/publish", response_model=EventResponse)
def publish_event(event_id: int, db: Session = Depends(get_db)):
    """
    發布活動（主辦方 endpoint）

    效果：
    - 狀態 -> Published
    - 第一次發布時建立 Prelims / Semi-Finals / Finals
    - 發布前已存在的報名會加入新回合

    重複發布已發布的活動：原樣返回，不做任何事
    """
    try:
        return EventManager.publish_event(db, event_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except InvalidStateTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to publish event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/events/{event_id}/transition", response_model=EventResponse)
def transition_event(event_id: int, transition: EventTransition, db: Session = Depends(get_db)):
    try:
        return EventManager.transition_event(db, event_id, transition.status)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except (InvalidStateTransition, ValidationFailed) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to transition event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/events/{event_id}/rounds", response_model=List[RoundResponse])
def list_rounds(event_id: int, db: Session = Depends(get_db)):
    try:
        return EventManager.get_rounds(db, event_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")


@router.get("/events/{event_id}/progress", response_model=List[RoundProgressResponse])
def round_progress(event_id: int, db: Session = Depends(get_db)):
    """每個回合的參加人數、晉級人數與得獎人數"""
    try:
        return EventManager.get_round_progress(db, event_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")


@router.post("/rounds/{round_id}/transition", response_model=RoundResponse)
def transition_round(round_id: int, transition: RoundTransition, db: Session = Depends(get_db)):
    try:
        return EventManager.transition_round(db, round_id, transition.status)
    except NotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except InvalidStateTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to transition round {round_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/events/{event_id}/reminders", response_model=List[AlertResponse])
def schedule_reminders(event_id: int, db: Session = Depends(get_db)):
    """依角色排程提醒：開始前一週、一天、一小時"""
    try:
        return AlertManager.schedule_event_reminders(db, event_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except InvalidStateTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to schedule reminders for event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
