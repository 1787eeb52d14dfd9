"""
狀態機：所有生命週期狀態變更都經過這裡

每個狀態機持有一張轉換表，`transition()` 驗證、套用並寫入 EventLog。
轉換後的連動處理（建立回合、確認報名）由各 Manager 負責
"""
import logging
from typing import Dict, Set

from sqlalchemy.orm import Session

from models import (
    Event,
    EventLog,
    EventRound,
    EventStatus,
    Payment,
    PaymentStatus,
    RoundStatus,
)
from core.exceptions import (
    EventNotFound,
    InvalidStateTransition,
    PaymentNotFound,
    RoundNotFound,
)
from core.locks import with_event_lock, with_payment_lock

logger = logging.getLogger(__name__)


class EventStateMachine:
    """活動生命週期：Draft <-> Published -> Ongoing -> Completed，未結束的狀態都可以 -> Cancelled"""

    TRANSITIONS: Dict[EventStatus, Set[EventStatus]] = {
        EventStatus.DRAFT: {EventStatus.PUBLISHED, EventStatus.CANCELLED},
        EventStatus.PUBLISHED: {EventStatus.DRAFT, EventStatus.ONGOING, EventStatus.CANCELLED},
        EventStatus.ONGOING: {EventStatus.COMPLETED, EventStatus.CANCELLED},
        EventStatus.COMPLETED: set(),
        EventStatus.CANCELLED: set(),
    }

    @classmethod
    def can_transition(cls, current: EventStatus, target: EventStatus) -> bool:
        return target in cls.TRANSITIONS[current]

    @classmethod
    def transition(cls, event_id: int, target: EventStatus, db: Session) -> Event:
        """
        在 row lock 下把活動轉到 `target`

        返回：
            更新後的 Event（已 flush，尚未 commit）

        拋出：
            EventNotFound
            InvalidStateTransition
        """
        event = with_event_lock(event_id, db).first()
        if not event:
            raise EventNotFound(event_id)

        previous = event.status
        if not cls.can_transition(previous, target):
            raise InvalidStateTransition(
                f"Event {event_id} cannot move from {previous.value} to {target.value}"
            )

        event.status = target
        db.add(EventLog(
            event_id=event_id,
            event_type="EVENT_STATE_CHANGED",
            data={"from": previous.value, "to": target.value},
        ))
        db.flush()

        logger.info(f"Event {event_id}: {previous.value} -> {target.value}")
        return event


class RoundStateMachine:
    TRANSITIONS: Dict[RoundStatus, Set[RoundStatus]] = {
        RoundStatus.SCHEDULED: {RoundStatus.ONGOING, RoundStatus.CANCELLED},
        RoundStatus.ONGOING: {RoundStatus.COMPLETED, RoundStatus.CANCELLED},
        RoundStatus.COMPLETED: set(),
        RoundStatus.CANCELLED: set(),
    }

    @classmethod
    def transition(cls, round_id: int, target: RoundStatus, db: Session) -> EventRound:
        round_obj = db.query(EventRound).filter(
            EventRound.id == round_id
        ).with_for_update(nowait=False).first()
        if not round_obj:
            raise RoundNotFound(round_id)

        previous = round_obj.status
        if target not in cls.TRANSITIONS[previous]:
            raise InvalidStateTransition(
                f"Round {round_id} cannot move from {previous.value} to {target.value}"
            )

        round_obj.status = target
        db.add(EventLog(
            event_id=round_obj.event_id,
            event_type="ROUND_STATE_CHANGED",
            data={"round_id": round_id, "from": previous.value, "to": target.value},
        ))
        db.flush()

        logger.info(f"Round {round_id}: {previous.value} -> {target.value}")
        return round_obj


class PaymentStateMachine:
    """
    付款狀態只能往前走：

        pending -> completed | failed
        completed -> refunded

    再次收到目前的狀態不算轉換，呼叫端視為冪等的 no-op（見 `is_repeat`）
    """

    TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
        PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
        PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
        PaymentStatus.FAILED: set(),
        PaymentStatus.REFUNDED: set(),
    }

    @staticmethod
    def is_repeat(payment: Payment, target: PaymentStatus) -> bool:
        return payment.status == target

    @classmethod
    def transition(cls, payment_id: int, target: PaymentStatus, db: Session) -> Payment:
        payment = with_payment_lock(payment_id, db).first()
        if not payment:
            raise PaymentNotFound(payment_id)

        previous = payment.status
        if target not in cls.TRANSITIONS[previous]:
            raise InvalidStateTransition(
                f"Payment {payment_id} cannot move from {previous.value} to {target.value}"
            )

        payment.status = target
        db.flush()

        logger.info(f"Payment {payment_id}: {previous.value} -> {target.value}")
        return payment
