"""
Accommodation Manager：住宿申請與分配

分配是對共用資料的「先檢查再寫入」，所以：
- 每次分配都在同一把 process lock 之下執行
- 讀取訂房紀錄前，先鎖住所有候選住宿（行級鎖）

因此兩筆日期重疊的申請不可能同時被核准到同一個住宿。
"""
import logging
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import transactional
from models import (
    Accommodation,
    AccommodationAvailability,
    AccommodationRequest,
    AccommodationRequestStatus,
    AlertPriority,
    AlertType,
    EventLog,
    SystemAlert,
)
from core.exceptions import (
    AccommodationNotFound,
    AccommodationRequestNotFound,
    DuplicateAccommodation,
    InvalidCapacity,
    InvalidDateRange,
    InvalidStateTransition,
    RequestAlreadyProcessed,
)
from core.locks import keyed_lock, lock_accommodations, with_request_lock
from services.allocation_service import (
    booked_accommodation_ids,
    choose_best_fit,
    eligible_accommodation_ids,
)

logger = logging.getLogger(__name__)

ALLOCATION_LOCK = "accommodation-allocation"
REJECTION_NOTE = "No suitable accommodation available matching capacity and date availability."


class AccommodationManager:

    @staticmethod
    def create_accommodation(
        db: Session,
        name: str,
        location: str,
        capacity: int,
        availability: AccommodationAvailability = AccommodationAvailability.AVAILABLE,
        description: Optional[str] = None,
    ) -> Accommodation:
        """
        拋出：
            InvalidCapacity: capacity 為 0 或負數
            DuplicateAccommodation: 名稱已被使用
        """
        if capacity <= 0:
            raise InvalidCapacity(f"Accommodation capacity must be positive, got {capacity}")
        try:
            return AccommodationManager._insert_accommodation(
                db, name, location, capacity, availability, description
            )
        except IntegrityError:
            raise DuplicateAccommodation(f"Accommodation {name!r} already exists")

    @staticmethod
    @transactional
    def _insert_accommodation(db, name, location, capacity, availability, description):
        accommodation = Accommodation(
            name=name,
            location=location,
            capacity=capacity,
            availability=availability,
            description=description,
        )
        db.add(accommodation)
        db.flush()
        return accommodation

    @staticmethod
    def request_accommodation(
        db: Session,
        user_id: int,
        check_in: date,
        check_out: date,
        number_of_people: int,
    ) -> AccommodationRequest:
        """
        建立住宿申請並立即分配

        申請的寫入與分配在同一個 transaction 內完成：
        分配失敗時整筆 rollback，不會留下 Pending 的申請。

        返回：
            申請本身，狀態為 Approved（含分配的住宿）或 Rejected

        拋出：
            InvalidDateRange: check_out 沒有晚於 check_in
            InvalidCapacity: 人數為 0 或負數
        """
        if check_out <= check_in:
            raise InvalidDateRange(
                f"check_out ({check_out}) must be after check_in ({check_in})"
            )
        if number_of_people <= 0:
            raise InvalidCapacity(f"Party size must be positive, got {number_of_people}")

        with keyed_lock(ALLOCATION_LOCK):
            return AccommodationManager._request_and_allocate(
                db, user_id, check_in, check_out, number_of_people
            )

    @staticmethod
    @transactional
    def _request_and_allocate(db, user_id, check_in, check_out, number_of_people) -> AccommodationRequest:
        request = AccommodationRequest(
            user_id=user_id,
            check_in=check_in,
            check_out=check_out,
            number_of_people=number_of_people,
            status=AccommodationRequestStatus.PENDING,
        )
        db.add(request)
        db.flush()
        return AccommodationManager._assign(db, request)

    @staticmethod
    def allocate(db: Session, request_id: int) -> AccommodationRequest:
        """
        重新分配一筆仍為 Pending 的申請

        拋出：
            AccommodationRequestNotFound
            RequestAlreadyProcessed: 申請已不是 Pending
        """
        with keyed_lock(ALLOCATION_LOCK):
            return AccommodationManager._allocate(db, request_id)

    @staticmethod
    @transactional
    def _allocate(db: Session, request_id: int) -> AccommodationRequest:
        request = with_request_lock(request_id, db).first()
        if not request:
            raise AccommodationRequestNotFound(request_id)
        if request.status != AccommodationRequestStatus.PENDING:
            raise RequestAlreadyProcessed(
                f"Request {request_id} is already processed (status: {request.status.value})"
            )
        return AccommodationManager._assign(db, request)

    @staticmethod
    def _assign(db: Session, request: AccommodationRequest) -> AccommodationRequest:
        """
        Best-fit 分配（request 必須已 flush，呼叫端持有 ALLOCATION_LOCK）

        流程：
        1. 找出符合條件的住宿（容量、可用狀態），依 id 順序上鎖
        2. 排除日期重疊的 Approved 訂房
        3. 核准到容量最小者（容量相同取 id 最小），否則 Reject
        """
        # 1. 候選 + 上鎖
        eligible_ids = eligible_accommodation_ids(db, request.number_of_people)
        candidates = lock_accommodations(eligible_ids, db).all() if eligible_ids else []

        # 2. 排除重疊
        booked = booked_accommodation_ids(
            db, request.check_in, request.check_out, exclude_request_id=request.id
        )
        candidates = [a for a in candidates if a.id not in booked]

        # 3. 決定
        chosen = choose_best_fit(candidates)
        if chosen:
            request.status = AccommodationRequestStatus.APPROVED
            request.assigned_accommodation_id = chosen.id
            request.assignment_notes = f"Automatically assigned to accommodation {chosen.name} (id {chosen.id})."
            message = (
                f"Your accommodation request for {request.check_in} to {request.check_out} "
                f"was approved: {chosen.name}."
            )
            logger.info(f"Request {request.id} approved onto accommodation {chosen.id} ({chosen.name})")
        else:
            request.status = AccommodationRequestStatus.REJECTED
            request.assigned_accommodation_id = None
            request.assignment_notes = REJECTION_NOTE
            message = (
                f"Your accommodation request for {request.check_in} to {request.check_out} "
                f"could not be fulfilled."
            )
            logger.info(
                f"Request {request.id} rejected: no accommodation for "
                f"{request.number_of_people} people, {request.check_in}..{request.check_out}"
            )

        db.add(SystemAlert(
            user_id=request.user_id,
            alert_type=AlertType.ACCOMMODATION_UPDATE,
            message=message,
            priority=AlertPriority.MEDIUM,
        ))
        db.add(EventLog(
            event_type="ACCOMMODATION_ALLOCATED",
            data={
                "request_id": request.id,
                "status": request.status.value,
                "accommodation_id": request.assigned_accommodation_id,
            },
        ))
        db.flush()
        return request

    @staticmethod
    @transactional
    def cancel_request(db: Session, request_id: int) -> AccommodationRequest:
        """
        取消 Pending、Approved 或 Waitlisted 的申請

        Approved 的申請保留住宿 id 作為紀錄；只有 Approved 才算訂房，
        所以取消後日期即被釋放。
        """
        request = with_request_lock(request_id, db).first()
        if not request:
            raise AccommodationRequestNotFound(request_id)
        if request.status in (AccommodationRequestStatus.REJECTED, AccommodationRequestStatus.CANCELLED):
            raise InvalidStateTransition(
                f"Request {request_id} cannot be cancelled from {request.status.value}"
            )

        request.status = AccommodationRequestStatus.CANCELLED
        db.flush()
        logger.info(f"Request {request_id} cancelled")
        return request

    @staticmethod
    def get_request(db: Session, request_id: int) -> AccommodationRequest:
        request = db.query(AccommodationRequest).filter(AccommodationRequest.id == request_id).first()
        if not request:
            raise AccommodationRequestNotFound(request_id)
        return request

    @staticmethod
    def get_accommodation(db: Session, accommodation_id: int) -> Accommodation:
        accommodation = db.query(Accommodation).filter(Accommodation.id == accommodation_id).first()
        if not accommodation:
            raise AccommodationNotFound(accommodation_id)
        return accommodation

    @staticmethod
    def get_bookings(db: Session, accommodation_id: int):
        """住宿上的 Approved 申請，依入住日排序"""
        AccommodationManager.get_accommodation(db, accommodation_id)
        return db.query(AccommodationRequest).filter(
            AccommodationRequest.assigned_accommodation_id == accommodation_id,
            AccommodationRequest.status == AccommodationRequestStatus.APPROVED,
        ).order_by(AccommodationRequest.check_in, AccommodationRequest.id).all()
