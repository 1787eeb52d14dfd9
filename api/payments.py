"""
Payment API Endpoints

職責：
1. 記錄付款（報名或贊助合約，二擇一）
2. 金流回呼更新付款狀態
3. 財務摘要
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    FinancialSummaryResponse,
    PaymentCreate,
    PaymentResponse,
    PaymentStatusUpdate,
)
from core.exceptions import Conflict, InvalidStateTransition, NotFound, ValidationFailed
from core.payment_manager import PaymentManager

router = APIRouter(prefix="/api/payments", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("", response_model=PaymentResponse, status_code=201)
def record_payment(payment_data: PaymentCreate, db: Session = Depends(get_db)):
    """
    記錄一筆付款（對象為報名或贊助合約）

    錯誤：
    - 400：同時指定兩個對象或都沒指定、金額不是正數
    - 404：對象不存在
    - 409：transaction_id 已被記錄
    """
    try:
        return PaymentManager.record_payment(db, **payment_data.model_dump())
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to record payment: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/summary", response_model=FinancialSummaryResponse)
def financial_summary(db: Session = Depends(get_db)):
    return PaymentManager.financial_summary(db)


@router.get("/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: int, db: Session = Depends(get_db)):
    try:
        return PaymentManager.get_payment(db, payment_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Payment not found")


@router.post("/{payment_id}/status", response_model=PaymentResponse)
def update_payment_status(payment_id: int, update: PaymentStatusUpdate, db: Session = Depends(get_db)):
    """金流回呼：付款狀態只能往前走（completed 會確認對應的報名）"""
    try:
        return PaymentManager.update_payment_status(db, payment_id, update.status)
    except NotFound:
        raise HTTPException(status_code=404, detail="Payment not found")
    except InvalidStateTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update payment {payment_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
