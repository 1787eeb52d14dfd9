"""
Registration API Endpoints

職責：
1. 報名活動（同時加入活動現有的所有回合）
2. 查詢報名與各回合成績
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    RegistrationCreate,
    RegistrationDetailResponse,
    RegistrationResponse,
    RoundStandingResponse,
)
from core.exceptions import Conflict, NotFound, ValidationFailed
from core.registration_manager import RegistrationManager

router = APIRouter(prefix="/api/registrations", tags=["registrations"])
logger = logging.getLogger(__name__)


@router.post("", response_model=RegistrationResponse, status_code=201)
def create_registration(registration_data: RegistrationCreate, db: Session = Depends(get_db)):
    """
    報名活動（參加者 endpoint）

    錯誤：
    - 404：活動不存在
    - 409：使用者已報名此活動
    - 400：活動已停止報名
    """
    try:
        return RegistrationManager.create_registration(db, **registration_data.model_dump())
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create registration: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{registration_id}", response_model=RegistrationDetailResponse)
def get_registration(registration_id: int, db: Session = Depends(get_db)):
    """報名資料，附帶各回合的名次與分數"""
    try:
        registration = RegistrationManager.get_registration(db, registration_id)
        standings = RegistrationManager.get_round_standings(db, registration_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Registration not found")

    response = RegistrationDetailResponse.model_validate(registration)
    response.rounds = [RoundStandingResponse.model_validate(rr) for rr in standings]
    return response
