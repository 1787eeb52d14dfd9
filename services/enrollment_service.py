"""
Enrollment service：讓 RoundRegistration 與回合、報名保持一致

兩個方向：
- 新的報名加入活動現有的每個回合
- 新建立的回合加入活動現有的每個報名（backfill）

兩者都不 commit，由呼叫端的 transaction 負責
"""
from typing import Iterable, Iterator, List

from sqlalchemy.orm import Session

from models import (
    EventRound,
    Registration,
    RegistrationStatus,
    RoundRegistration,
    RoundRegistrationStatus,
)
from core.exceptions import RoundEventMismatch


def iter_event_rounds(event_id: int, db: Session) -> Iterator[EventRound]:
    """依回合順序列出活動的回合；重新迭代會再查詢一次"""
    query = db.query(EventRound).filter(
        EventRound.event_id == event_id
    ).order_by(EventRound.round_order)
    yield from query


def link(round_obj: EventRound, registration: Registration) -> RoundRegistration:
    if round_obj.event_id != registration.event_id:
        raise RoundEventMismatch(
            f"Round {round_obj.id} (event {round_obj.event_id}) cannot hold "
            f"registration {registration.id} (event {registration.event_id})"
        )
    return RoundRegistration(
        round_id=round_obj.id,
        registration_id=registration.id,
        status=RoundRegistrationStatus.QUALIFIED,
    )


def cascade_registration(registration: Registration, db: Session) -> List[RoundRegistration]:
    """
    把剛寫入的報名加入每個現有回合

    注意：
        - 報名必須已經 flush（需要 id）
        - 沒有回合時不建立任何資料，發布活動時再由 `enroll_existing_registrations` 補上
    """
    links = [link(round_obj, registration) for round_obj in iter_event_rounds(registration.event_id, db)]
    db.add_all(links)
    db.flush()
    return links


def enroll_existing_registrations(
    event_id: int, rounds: Iterable[EventRound], db: Session
) -> List[RoundRegistration]:
    """
    把活動所有未取消的報名加入 `rounds`

    已經存在的對應會略過，重複執行不會產生重複資料
    """
    rounds = list(rounds)
    if not rounds:
        return []

    registrations = db.query(Registration).filter(
        Registration.event_id == event_id,
        Registration.status != RegistrationStatus.CANCELLED,
    ).order_by(Registration.id).all()

    existing = {
        (rr.round_id, rr.registration_id)
        for rr in db.query(RoundRegistration).filter(
            RoundRegistration.round_id.in_([r.id for r in rounds])
        )
    }

    links = []
    for round_obj in rounds:
        for registration in registrations:
            if (round_obj.id, registration.id) in existing:
                continue
            links.append(link(round_obj, registration))

    db.add_all(links)
    db.flush()
    return links
