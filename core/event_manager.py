"""
Event Manager：活動生命週期與回合建立

職責：
1. 建立活動（一律為 Draft）
2. 發布活動，預設的三個回合只建立一次
3. 活動與回合的其他狀態轉換
4. 查詢活動、回合與回合進度

所有狀態變更都經過狀態機；建立回合與發布在同一個 transaction 內
"""
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_settings, transactional
from models import (
    Event,
    EventLog,
    EventRound,
    EventStatus,
    RoundRegistration,
    RoundRegistrationStatus,
    RoundStatus,
)
from core.exceptions import (
    DuplicateEventSlot,
    EventNotFound,
    InvalidCapacity,
    ValidationFailed,
)
from core.locks import keyed_lock, with_event_lock
from core.state_machine import EventStateMachine, RoundStateMachine
from services.enrollment_service import enroll_existing_registrations
from services.round_bootstrap_service import bootstrap_rounds
from time_utils import ensure_naive_utc

logger = logging.getLogger(__name__)


class EventManager:
    """活動生命週期管理器"""

    @staticmethod
    def create_event(
        db: Session,
        name: str,
        event_date: date,
        start_time: time,
        venue_id: Optional[int] = None,
        organizer_id: Optional[int] = None,
        registration_fee: Decimal = Decimal("0"),
        max_participants: Optional[int] = None,
        registration_deadline: Optional[datetime] = None,
    ) -> Event:
        """
        建立 Draft 活動

        拋出：
            InvalidCapacity：max_participants 為 0 或負數
            ValidationFailed：報名費為負數
            DuplicateEventSlot：同一場地、日期、時間已有其他活動
        """
        if max_participants is not None and max_participants <= 0:
            raise InvalidCapacity(f"max_participants must be positive, got {max_participants}")
        if registration_fee < 0:
            raise ValidationFailed(f"registration_fee cannot be negative, got {registration_fee}")
        if registration_deadline is not None:
            registration_deadline = ensure_naive_utc(registration_deadline)

        try:
            return EventManager._insert_event(
                db,
                name=name,
                event_date=event_date,
                start_time=start_time,
                venue_id=venue_id,
                organizer_id=organizer_id,
                registration_fee=registration_fee,
                max_participants=max_participants,
                registration_deadline=registration_deadline,
            )
        except IntegrityError:
            raise DuplicateEventSlot(
                f"Venue {venue_id} already hosts an event on {event_date} at {start_time}"
            )

    @staticmethod
    @transactional
    def _insert_event(db: Session, **fields) -> Event:
        event = Event(status=EventStatus.DRAFT, **fields)
        db.add(event)
        db.flush()
        logger.info(f"Created event {event.id} ({event.name})")
        return event

    @staticmethod
    def publish_event(db: Session, event_id: int) -> Event:
        """
        發布活動並建立回合

        流程：
        1. 先取得該活動的 process lock，再鎖定 event row
        2. 已經是 Published：直接返回（並發時較晚的請求就在這裡結束）
        3. 透過狀態機轉為 Published
        4. 活動還沒有回合時建立 Prelims / Semi-Finals / Finals
        5. 把發布前就已報名的參加者加入回合

        拋出：
            EventNotFound
            InvalidStateTransition：活動為 Ongoing、Completed 或 Cancelled
        """
        with keyed_lock(f"event:{event_id}"):
            try:
                return EventManager._publish(db, event_id)
            except IntegrityError:
                # 其他 process 在檢查與寫入之間已建立回合
                logger.warning(f"Concurrent bootstrap for event {event_id}, keeping the winner's rounds")
                return EventManager.get_event(db, event_id)

    @staticmethod
    @transactional
    def _publish(db: Session, event_id: int) -> Event:
        # 1. 鎖定活動
        event = with_event_lock(event_id, db).first()
        if not event:
            raise EventNotFound(event_id)

        # 2. 重複發布
        if event.status == EventStatus.PUBLISHED:
            logger.info(f"Event {event_id} is already published, nothing to do")
            return event

        # 3. 狀態轉換
        event = EventStateMachine.transition(event_id, EventStatus.PUBLISHED, db)

        # 4. 建立回合（已有回合時不做事，例如 Published -> Draft -> Published）
        rounds = bootstrap_rounds(event, db)
        if not rounds:
            return event

        db.add(EventLog(
            event_id=event_id,
            event_type="ROUNDS_BOOTSTRAPPED",
            data={"round_ids": [r.id for r in rounds]},
        ))
        logger.info(f"Bootstrapped {len(rounds)} rounds for event {event_id}")

        # 5. 補上既有報名
        if get_settings().backfill_enrollment_on_publish:
            links = enroll_existing_registrations(event_id, rounds, db)
            if links:
                logger.info(f"Backfilled {len(links)} round registrations for event {event_id}")

        return event

    @staticmethod
    @transactional
    def transition_event(db: Session, event_id: int, target: EventStatus) -> Event:
        """
        發布以外的狀態轉換

        注意：發布必須走 publish_event，回合才會建立
        """
        if target == EventStatus.PUBLISHED:
            raise ValidationFailed("Use publish_event to publish an event")
        return EventStateMachine.transition(event_id, target, db)

    @staticmethod
    @transactional
    def transition_round(db: Session, round_id: int, target: RoundStatus) -> EventRound:
        return RoundStateMachine.transition(round_id, target, db)

    @staticmethod
    def get_event(db: Session, event_id: int) -> Event:
        """
        拋出：
            EventNotFound
        """
        event = db.query(Event).filter(Event.id == event_id).first()
        if not event:
            raise EventNotFound(event_id)
        return event

    @staticmethod
    def get_rounds(db: Session, event_id: int) -> List[EventRound]:
        EventManager.get_event(db, event_id)
        return db.query(EventRound).filter(
            EventRound.event_id == event_id
        ).order_by(EventRound.round_order).all()

    @staticmethod
    def get_round_progress(db: Session, event_id: int) -> List[Dict]:
        """
        每個回合的人數：參加、晉級、得獎
        """
        EventManager.get_event(db, event_id)
        rows = (
            db.query(
                EventRound,
                func.count(RoundRegistration.id),
                func.sum(case((RoundRegistration.status == RoundRegistrationStatus.ADVANCED, 1), else_=0)),
                func.sum(case((RoundRegistration.status == RoundRegistrationStatus.WINNER, 1), else_=0)),
            )
            .outerjoin(RoundRegistration, RoundRegistration.round_id == EventRound.id)
            .filter(EventRound.event_id == event_id)
            .group_by(EventRound.id)
            .order_by(EventRound.round_order)
            .all()
        )
        return [
            {
                "round_id": round_obj.id,
                "round_name": round_obj.name,
                "round_order": round_obj.round_order,
                "status": round_obj.status,
                "participants": participants,
                "advanced": advanced or 0,
                "winners": winners or 0,
            }
            for round_obj, participants, advanced, winners in rows
        ]
