from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccommodationAvailability,
    AccommodationRequestStatus,
    AlertPriority,
    AlertType,
    EventStatus,
    PaymentMethod,
    PaymentStatus,
    RegistrationPaymentStatus,
    RegistrationStatus,
    RoundRegistrationStatus,
    RoundStatus,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============ 活動與回合 ============

class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    event_date: date
    start_time: time
    venue_id: Optional[int] = None
    organizer_id: Optional[int] = None
    registration_fee: Decimal = Decimal("0")
    max_participants: Optional[int] = None
    registration_deadline: Optional[datetime] = None


class EventTransition(BaseModel):
    status: EventStatus


class RoundTransition(BaseModel):
    status: RoundStatus


class EventResponse(ORMModel):
    id: int
    name: str
    event_date: date
    start_time: time
    venue_id: Optional[int]
    registration_fee: Decimal
    max_participants: Optional[int]
    registration_deadline: Optional[datetime]
    status: EventStatus


class RoundResponse(ORMModel):
    id: int
    event_id: int
    name: str
    round_order: int
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    venue_id: Optional[int]
    status: RoundStatus


class RoundProgressResponse(BaseModel):
    round_id: int
    round_name: str
    round_order: int
    status: RoundStatus
    participants: int
    advanced: int
    winners: int


# ============ 報名 ============

class RegistrationCreate(BaseModel):
    user_id: int
    event_id: int
    team_id: Optional[int] = None
    special_requirements: Optional[str] = None


class RoundStandingResponse(ORMModel):
    id: int
    round_id: int
    registration_id: int
    status: RoundRegistrationStatus
    score: Optional[Decimal]
    rank_position: Optional[int]


class RegistrationResponse(ORMModel):
    id: int
    user_id: int
    event_id: int
    team_id: Optional[int]
    status: RegistrationStatus
    payment_status: RegistrationPaymentStatus
    registered_at: datetime


class RegistrationDetailResponse(RegistrationResponse):
    rounds: List[RoundStandingResponse] = []


# ============ 分數 ============

class ScoreSubmit(BaseModel):
    event_id: int
    judge_id: int
    value: Decimal = Field(..., ge=0)
    registration_id: Optional[int] = None
    round_id: Optional[int] = None
    comments: Optional[str] = None


class ScoreUpdate(BaseModel):
    value: Decimal = Field(..., ge=0)
    comments: Optional[str] = None


class ScoreResponse(ORMModel):
    id: int
    event_id: int
    registration_id: Optional[int]
    round_id: Optional[int]
    judge_id: int
    value: Decimal
    is_winner: bool
    winner_position: Optional[int]
    provisional_is_winner: bool
    provisional_position: Optional[int]


class DeclareWinnersRequest(BaseModel):
    round_id: Optional[int] = None
    tie_policy: Optional[str] = Field(None, pattern="^(sequential|shared)$")


class PodiumEntry(BaseModel):
    registration_id: int
    user_id: int
    mean_score: Decimal
    position: int


class WinnerResponse(BaseModel):
    score_id: int
    round_id: Optional[int]
    round_name: Optional[str]
    registration_id: int
    user_id: int
    value: Decimal
    winner_position: Optional[int]


# ============ 住宿 ============

class AccommodationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    location: str
    capacity: int
    availability: AccommodationAvailability = AccommodationAvailability.AVAILABLE
    description: Optional[str] = None


class AccommodationResponse(ORMModel):
    id: int
    name: str
    location: str
    capacity: int
    availability: AccommodationAvailability


class AccommodationRequestCreate(BaseModel):
    user_id: int
    check_in: date
    check_out: date
    number_of_people: int


class AccommodationRequestResponse(ORMModel):
    id: int
    user_id: int
    check_in: date
    check_out: date
    number_of_people: int
    status: AccommodationRequestStatus
    assigned_accommodation_id: Optional[int]
    assignment_notes: Optional[str]


# ============ 付款 ============

class PaymentCreate(BaseModel):
    amount: Decimal
    method: PaymentMethod
    registration_id: Optional[int] = None
    contract_id: Optional[int] = None
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    payer_user_id: Optional[int] = None
    description: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus


class PaymentResponse(ORMModel):
    id: int
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str]
    related_registration_id: Optional[int]
    related_contract_id: Optional[int]


class FinancialSummaryResponse(BaseModel):
    registration_revenue: Decimal
    sponsorship_revenue: Decimal


# ============ 通知與排程 ============

class AlertResponse(ORMModel):
    id: int
    user_id: Optional[int]
    target_role: Optional[str]
    alert_type: AlertType
    message: str
    related_event_id: Optional[int]
    related_round_id: Optional[int]
    priority: AlertPriority
    scheduled_for: Optional[datetime]
    is_sent: bool
    is_read: bool


class InventoryItemCreate(BaseModel):
    name: str
    quantity_on_hand: int = 0
    low_stock_threshold: Optional[int] = None


class InventoryAdjust(BaseModel):
    delta: int


class InventoryItemResponse(ORMModel):
    id: int
    name: str
    quantity_on_hand: int
    low_stock_threshold: Optional[int]


class JobRunResponse(BaseModel):
    job: str
    status: str
    count: int
