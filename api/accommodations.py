"""
Accommodation API Endpoints

職責：
1. 建立住宿、查詢訂房紀錄
2. 住宿申請：建立時立即分配，回應即為 Approved（含住宿）或 Rejected
3. 重新分配、取消申請
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    AccommodationCreate,
    AccommodationRequestCreate,
    AccommodationRequestResponse,
    AccommodationResponse,
)
from core.accommodation_manager import AccommodationManager
from core.exceptions import Conflict, InvalidStateTransition, NotFound, ValidationFailed

router = APIRouter(prefix="/api/accommodations", tags=["accommodations"])
logger = logging.getLogger(__name__)


@router.post("", response_model=AccommodationResponse, status_code=201)
def create_accommodation(data: AccommodationCreate, db: Session = Depends(get_db)):
    try:
        return AccommodationManager.create_accommodation(db, **data.model_dump())
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create accommodation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{accommodation_id}", response_model=AccommodationResponse)
def get_accommodation(accommodation_id: int, db: Session = Depends(get_db)):
    try:
        return AccommodationManager.get_accommodation(db, accommodation_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Accommodation not found")


@router.get("/{accommodation_id}/bookings", response_model=List[AccommodationRequestResponse])
def list_bookings(accommodation_id: int, db: Session = Depends(get_db)):
    try:
        return AccommodationManager.get_bookings(db, accommodation_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Accommodation not found")


@router.post("/requests", response_model=AccommodationRequestResponse, status_code=201)
def request_accommodation(data: AccommodationRequestCreate, db: Session = Depends(get_db)):
    """
    申請住宿（參加者 endpoint）

    錯誤：
    - 400：check_out 沒有晚於 check_in，或人數不是正數
    """
    try:
        return AccommodationManager.request_accommodation(db, **data.model_dump())
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to request accommodation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/requests/{request_id}", response_model=AccommodationRequestResponse)
def get_request(request_id: int, db: Session = Depends(get_db)):
    try:
        return AccommodationManager.get_request(db, request_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Accommodation request not found")


@router.post("/requests/{request_id}/allocate", response_model=AccommodationRequestResponse)
def allocate_request(request_id: int, db: Session = Depends(get_db)):
    """重新分配仍為 Pending 的申請"""
    try:
        return AccommodationManager.allocate(db, request_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Accommodation request not found")
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to allocate request {request_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/requests/{request_id}/cancel", response_model=AccommodationRequestResponse)
def cancel_request(request_id: int, db: Session = Depends(get_db)):
    try:
        return AccommodationManager.cancel_request(db, request_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Accommodation request not found")
    except InvalidStateTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to cancel request {request_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
