"""
Alert Manager：由請求觸發的通知操作

定時排程放在 core/scheduler.py；這裡只處理使用者或主辦方直接觸發的操作
"""
import logging
from typing import List

from sqlalchemy.orm import Session

from database import transactional
from models import EventStatus, InventoryItem, SystemAlert
from core.exceptions import (
    AlertNotFound,
    InventoryItemNotFound,
    InvalidStateTransition,
    ValidationFailed,
)
from core.event_manager import EventManager
from services.alert_service import raise_low_stock_alerts, schedule_event_reminders

logger = logging.getLogger(__name__)


class AlertManager:

    @staticmethod
    @transactional
    def schedule_event_reminders(db: Session, event_id: int) -> List[SystemAlert]:
        """
        拋出：
            EventNotFound
            InvalidStateTransition：活動已取消或已結束
        """
        event = EventManager.get_event(db, event_id)
        if event.status in (EventStatus.CANCELLED, EventStatus.COMPLETED):
            raise InvalidStateTransition(
                f"Cannot schedule reminders for a {event.status.value} event"
            )
        return schedule_event_reminders(db, event)

    @staticmethod
    @transactional
    def mark_read(db: Session, alert_id: int) -> SystemAlert:
        alert = db.query(SystemAlert).filter(SystemAlert.id == alert_id).first()
        if not alert:
            raise AlertNotFound(alert_id)
        alert.is_read = True
        return alert


class InventoryManager:

    @staticmethod
    @transactional
    def create_item(db: Session, name: str, quantity_on_hand: int = 0, low_stock_threshold=None) -> InventoryItem:
        if quantity_on_hand < 0:
            raise ValidationFailed(f"quantity_on_hand cannot be negative, got {quantity_on_hand}")
        if low_stock_threshold is not None and low_stock_threshold < 0:
            raise ValidationFailed(f"low_stock_threshold cannot be negative, got {low_stock_threshold}")
        item = InventoryItem(
            name=name,
            quantity_on_hand=quantity_on_hand,
            low_stock_threshold=low_stock_threshold,
        )
        db.add(item)
        db.flush()
        return item

    @staticmethod
    @transactional
    def adjust_quantity(db: Session, item_id: int, delta: int) -> InventoryItem:
        """
        增減庫存（delta 為負數時減少），必要時發出低庫存通知

        拋出：
            InventoryItemNotFound
            ValidationFailed：調整後會低於 0
        """
        item = db.query(InventoryItem).filter(
            InventoryItem.id == item_id
        ).with_for_update(nowait=False).first()
        if not item:
            raise InventoryItemNotFound(item_id)

        previous = item.quantity_on_hand
        if previous + delta < 0:
            raise ValidationFailed(
                f"Item {item_id} has {previous} units, cannot remove {-delta}"
            )

        item.quantity_on_hand = previous + delta
        db.flush()
        raise_low_stock_alerts(db, item, previous)

        logger.info(f"Item {item_id} stock {previous} -> {item.quantity_on_hand}")
        return item
