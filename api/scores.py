"""
Score API Endpoints

職責：
1. 評審送出與修正分數
2. 主辦方為活動或回合宣布得獎者
3. 查詢分數與已宣布的名次
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    DeclareWinnersRequest,
    PodiumEntry,
    ScoreResponse,
    ScoreSubmit,
    ScoreUpdate,
    WinnerResponse,
)
from core.event_manager import EventManager
from core.exceptions import NotFound, ValidationFailed
from core.score_manager import ScoreManager

router = APIRouter(prefix="/api", tags=["scores"])
logger = logging.getLogger(__name__)


@router.post("/scores", response_model=ScoreResponse, status_code=201)
def submit_score(score_data: ScoreSubmit, db: Session = Depends(get_db)):
    """
    評審送出分數

    同一個交易內重新計算該範圍的暫定得獎標記
    """
    try:
        return ScoreManager.submit_score(db, **score_data.model_dump())
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to submit score: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/scores/{score_id}", response_model=ScoreResponse)
def update_score(score_id: int, score_data: ScoreUpdate, db: Session = Depends(get_db)):
    try:
        return ScoreManager.update_score(db, score_id, score_data.value, score_data.comments)
    except NotFound:
        raise HTTPException(status_code=404, detail="Score not found")
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update score {score_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/events/{event_id}/scores", response_model=List[ScoreResponse])
def list_scores(event_id: int, round_id: Optional[int] = None, db: Session = Depends(get_db)):
    """某個範圍的分數；不帶 round_id 時返回活動層級的分數"""
    try:
        EventManager.get_event(db, event_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    return ScoreManager.get_scores(db, event_id, round_id)


@router.post("/events/{event_id}/winners", response_model=List[PodiumEntry])
def declare_winners(event_id: int, request: DeclareWinnersRequest, db: Session = Depends(get_db)):
    """
    宣布活動或回合的名次（主辦方 endpoint）

    注意：可重複呼叫，分數沒變時名次相同，也不會再發公告
    """
    try:
        return ScoreManager.declare_winners(db, event_id, request.round_id, request.tie_policy)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to declare winners for event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/events/{event_id}/winners", response_model=List[WinnerResponse])
def list_winners(event_id: int, db: Session = Depends(get_db)):
    try:
        EventManager.get_event(db, event_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    return ScoreManager.get_winners(db, event_id)
