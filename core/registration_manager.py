"""
Registration Manager：活動報名與回合對應

報名與它的 RoundRegistration 在同一個 transaction 寫入，要嘛都存在，要嘛都不存在
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import transactional
from models import (
    EventStatus,
    Registration,
    RegistrationPaymentStatus,
    RegistrationStatus,
    RoundRegistration,
    EventRound,
    EventLog,
)
from core.exceptions import (
    DuplicateRegistration,
    EventNotFound,
    RegistrationClosed,
    RegistrationNotFound,
)
from core.locks import with_event_lock
from services.enrollment_service import cascade_registration
from time_utils import utcnow

logger = logging.getLogger(__name__)

CLOSED_EVENT_STATUSES = (EventStatus.CANCELLED, EventStatus.COMPLETED)

# 佔用 max_participants 名額的狀態
SEATED_STATUSES = (
    RegistrationStatus.PENDING,
    RegistrationStatus.CONFIRMED,
    RegistrationStatus.CHECKED_IN,
)


class RegistrationManager:

    @staticmethod
    def create_registration(
        db: Session,
        user_id: int,
        event_id: int,
        team_id: Optional[int] = None,
        special_requirements: Optional[str] = None,
    ) -> Registration:
        """
        報名活動，並加入活動現有的所有回合

        流程：
        1. 鎖定活動，確認仍接受報名
        2. 同一使用者不能重複報名
        3. 名額已滿時列入候補
        4. 寫入報名並加入每個回合

        拋出：
            EventNotFound
            RegistrationClosed：活動已取消、已結束或已過截止時間
            DuplicateRegistration：使用者已報名此活動
        """
        try:
            return RegistrationManager._create(
                db, user_id, event_id, team_id, special_requirements
            )
        except IntegrityError:
            # 同一 (user, event) 被並發寫入，這邊較晚
            raise DuplicateRegistration(
                f"User {user_id} is already registered for event {event_id}"
            )

    @staticmethod
    @transactional
    def _create(
        db: Session,
        user_id: int,
        event_id: int,
        team_id: Optional[int],
        special_requirements: Optional[str],
    ) -> Registration:
        # 1. 檢查活動
        event = with_event_lock(event_id, db).first()
        if not event:
            raise EventNotFound(event_id)
        if event.status in CLOSED_EVENT_STATUSES:
            raise RegistrationClosed(
                f"Event {event_id} is {event.status.value} and not accepting registrations"
            )
        if event.registration_deadline and utcnow() > event.registration_deadline:
            raise RegistrationClosed(f"Registration for event {event_id} closed")

        # 2. 重複報名
        existing = db.query(Registration).filter(
            Registration.user_id == user_id,
            Registration.event_id == event_id,
        ).first()
        if existing:
            raise DuplicateRegistration(
                f"User {user_id} is already registered for event {event_id}"
            )

        # 3. 名額
        status = RegistrationStatus.PENDING
        if event.max_participants is not None:
            seated = db.query(Registration).filter(
                Registration.event_id == event_id,
                Registration.status.in_(SEATED_STATUSES),
            ).count()
            if seated >= event.max_participants:
                status = RegistrationStatus.WAITLISTED

        payment_status = RegistrationPaymentStatus.PENDING
        if not event.registration_fee:
            payment_status = RegistrationPaymentStatus.NOT_REQUIRED

        # 4. 寫入並加入回合
        registration = Registration(
            user_id=user_id,
            event_id=event_id,
            team_id=team_id,
            status=status,
            payment_status=payment_status,
            special_requirements=special_requirements,
        )
        db.add(registration)
        db.flush()

        links = cascade_registration(registration, db)

        db.add(EventLog(
            event_id=event_id,
            event_type="REGISTRATION_CREATED",
            data={
                "registration_id": registration.id,
                "status": status.value,
                "rounds": len(links),
            },
        ))

        logger.info(
            f"Registration {registration.id} (user {user_id}, event {event_id}) "
            f"created as {status.value}, enrolled in {len(links)} rounds"
        )
        return registration

    @staticmethod
    def get_registration(db: Session, registration_id: int) -> Registration:
        registration = db.query(Registration).filter(Registration.id == registration_id).first()
        if not registration:
            raise RegistrationNotFound(registration_id)
        return registration

    @staticmethod
    def get_round_standings(db: Session, registration_id: int):
        """報名在各回合的 RoundRegistration，依回合順序"""
        RegistrationManager.get_registration(db, registration_id)
        return (
            db.query(RoundRegistration)
            .join(EventRound, RoundRegistration.round_id == EventRound.id)
            .filter(RoundRegistration.registration_id == registration_id)
            .order_by(EventRound.round_order)
            .all()
        )
