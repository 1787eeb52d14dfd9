"""
Allocation service：尋找最適合的住宿

候選住宿的條件：
- 不是 Unavailable（Maintenance 仍可預訂）
- capacity >= 人數
- 沒有與 [check_in, check_out) 重疊的 Approved 申請

候選中 capacity 最小者優先；capacity 相同時取 id 最小者
"""
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from models import (
    Accommodation,
    AccommodationAvailability,
    AccommodationRequest,
    AccommodationRequestStatus,
)


def eligible_accommodation_ids(db: Session, party_size: int) -> List[int]:
    rows = db.query(Accommodation.id).filter(
        Accommodation.capacity >= party_size,
        Accommodation.availability != AccommodationAvailability.UNAVAILABLE,
    ).order_by(Accommodation.id).all()
    return [row.id for row in rows]


def booked_accommodation_ids(
    db: Session,
    check_in: date,
    check_out: date,
    exclude_request_id: Optional[int] = None,
) -> set:
    """
    住宿期間與申請重疊、且已有 Approved 申請的住宿

    注意：住宿期間為半開區間，退房日與他人入住日相同不算重疊
    （existing_in < new_out 且 existing_out > new_in）
    """
    query = db.query(AccommodationRequest.assigned_accommodation_id).filter(
        AccommodationRequest.status == AccommodationRequestStatus.APPROVED,
        AccommodationRequest.assigned_accommodation_id.isnot(None),
        AccommodationRequest.check_in < check_out,
        AccommodationRequest.check_out > check_in,
    )
    if exclude_request_id is not None:
        query = query.filter(AccommodationRequest.id != exclude_request_id)
    return {row.assigned_accommodation_id for row in query}


def choose_best_fit(candidates: List[Accommodation]) -> Optional[Accommodation]:
    if not candidates:
        return None
    return min(candidates, key=lambda a: (a.capacity, a.id))
