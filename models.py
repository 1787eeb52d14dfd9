"""
Ledger Store: 活動協調核心的 ORM models

資料庫能表達的約束（unique key、CHECK、付款對象二擇一）都放在這裡；
狀態變化後的連動處理放在 core/ 與 services/.
"""
import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from time_utils import combine, utcnow


# ============ Enums ============

class EventStatus(enum.Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class RoundStatus(enum.Enum):
    SCHEDULED = "Scheduled"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class RegistrationStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    WAITLISTED = "waitlisted"
    CHECKED_IN = "checked_in"


class RegistrationPaymentStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    NOT_REQUIRED = "not_required"


class RoundRegistrationStatus(enum.Enum):
    QUALIFIED = "Qualified"
    ELIMINATED = "Eliminated"
    ADVANCED = "Advanced"
    WINNER = "Winner"
    RUNNER_UP = "Runner_Up"
    THIRD_PLACE = "Third_Place"


class AccommodationAvailability(enum.Enum):
    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"
    MAINTENANCE = "Maintenance"


class AccommodationRequestStatus(enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    WAITLISTED = "Waitlisted"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(enum.Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    ONLINE_GATEWAY = "online_gateway"
    OTHER = "other"


class AlertType(enum.Enum):
    EVENT_REMINDER = "EventReminder"
    PAYMENT_DUE = "PaymentDue"
    REGISTRATION_DEADLINE = "RegistrationDeadline"
    EVENT_START = "EventStart"
    ROUND_START = "RoundStart"
    WINNER_ANNOUNCEMENT = "WinnerAnnouncement"
    SYSTEM_MAINTENANCE = "SystemMaintenance"
    LOW_INVENTORY = "LowInventory"
    ACCOMMODATION_UPDATE = "AccommodationUpdate"
    GENERAL = "General"


class AlertPriority(enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# ============ 活動與回合 ============

class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    event_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    # Venue 是其他服務維護的參考資料
    venue_id = Column(Integer, nullable=True)
    organizer_id = Column(Integer, nullable=True)
    registration_fee = Column(Numeric(10, 2), nullable=False, default=0)
    max_participants = Column(Integer, nullable=True)
    registration_deadline = Column(DateTime, nullable=True)
    status = Column(SQLEnum(EventStatus), nullable=False, default=EventStatus.DRAFT)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    rounds = relationship(
        "EventRound", back_populates="event", order_by="EventRound.round_order"
    )
    registrations = relationship("Registration", back_populates="event")

    __table_args__ = (
        UniqueConstraint("venue_id", "event_date", "start_time", name="uq_event_venue_time"),
        CheckConstraint("registration_fee >= 0", name="check_event_fee_non_negative"),
        CheckConstraint(
            "max_participants IS NULL OR max_participants > 0",
            name="check_event_max_participants_positive",
        ),
    )

    @property
    def starts_at(self):
        return combine(self.event_date, self.start_time)

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name={self.name}, status={self.status})>"


class EventRound(Base):
    __tablename__ = "event_rounds"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    round_order = Column(Integer, nullable=False)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    venue_id = Column(Integer, nullable=True)
    status = Column(SQLEnum(RoundStatus), nullable=False, default=RoundStatus.SCHEDULED)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    event = relationship("Event", back_populates="rounds")
    round_registrations = relationship("RoundRegistration", back_populates="round")

    __table_args__ = (
        UniqueConstraint("event_id", "round_order", name="uq_event_round_order"),
        CheckConstraint("round_order > 0", name="check_round_order_positive"),
        Index("ix_event_rounds_event_status", "event_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<EventRound(id={self.id}, event={self.event_id}, order={self.round_order})>"


# ============ 報名 ============

class Registration(Base):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    team_id = Column(Integer, nullable=True)
    status = Column(
        SQLEnum(RegistrationStatus), nullable=False, default=RegistrationStatus.PENDING
    )
    payment_status = Column(
        SQLEnum(RegistrationPaymentStatus),
        nullable=False,
        default=RegistrationPaymentStatus.PENDING,
    )
    special_requirements = Column(Text, nullable=True)
    registered_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    event = relationship("Event", back_populates="registrations")
    round_registrations = relationship("RoundRegistration", back_populates="registration")

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_user_event_registration"),
    )

    def __repr__(self) -> str:
        return f"<Registration(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"


class RoundRegistration(Base):
    __tablename__ = "round_registrations"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("event_rounds.id"), nullable=False)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False)
    status = Column(
        SQLEnum(RoundRegistrationStatus),
        nullable=False,
        default=RoundRegistrationStatus.QUALIFIED,
    )
    score = Column(Numeric(5, 2), nullable=True)
    rank_position = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    round = relationship("EventRound", back_populates="round_registrations")
    registration = relationship("Registration", back_populates="round_registrations")

    __table_args__ = (
        UniqueConstraint("round_id", "registration_id", name="uq_round_registration"),
        Index("ix_round_registrations_round_status", "round_id", "status"),
    )


# ============ 分數 ============

class Score(Base):
    __tablename__ = "scores"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=True)
    round_id = Column(Integer, ForeignKey("event_rounds.id"), nullable=True)
    judge_id = Column(Integer, nullable=False)
    value = Column(Numeric(5, 2), nullable=False)
    comments = Column(Text, nullable=True)
    # 由批次排名宣布（正式結果）
    is_winner = Column(Boolean, nullable=False, default=False)
    winner_position = Column(Integer, nullable=True)
    # 每次寫入分數時重新計算，僅供顯示
    provisional_is_winner = Column(Boolean, nullable=False, default=False)
    provisional_position = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    registration = relationship("Registration")
    round = relationship("EventRound")

    __table_args__ = (
        CheckConstraint("value >= 0", name="check_score_value_non_negative"),
        CheckConstraint(
            "winner_position IS NULL OR winner_position > 0",
            name="check_score_winner_position_positive",
        ),
        Index("ix_scores_event_winner", "event_id", "is_winner", "winner_position"),
    )


# ============ 住宿 ============

class Accommodation(Base):
    __tablename__ = "accommodations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    location = Column(String(255), nullable=False)
    capacity = Column(Integer, nullable=False)
    availability = Column(
        SQLEnum(AccommodationAvailability),
        nullable=False,
        default=AccommodationAvailability.AVAILABLE,
    )
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_accommodation_capacity_positive"),
    )

    def __repr__(self) -> str:
        return f"<Accommodation(id={self.id}, name={self.name}, capacity={self.capacity})>"


class AccommodationRequest(Base):
    __tablename__ = "accommodation_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    number_of_people = Column(Integer, nullable=False)
    status = Column(
        SQLEnum(AccommodationRequestStatus),
        nullable=False,
        default=AccommodationRequestStatus.PENDING,
    )
    assigned_accommodation_id = Column(Integer, ForeignKey("accommodations.id"), nullable=True)
    assignment_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    assigned_accommodation = relationship("Accommodation")

    __table_args__ = (
        CheckConstraint("number_of_people > 0", name="check_request_party_size_positive"),
        CheckConstraint("check_out > check_in", name="check_request_date_range"),
        Index("ix_accommodation_requests_assigned_status", "assigned_accommodation_id", "status"),
    )


# ============ 付款 ============

class SponsorshipContract(Base):
    __tablename__ = "sponsorship_contracts"

    id = Column(Integer, primary_key=True, index=True)
    sponsor_name = Column(String(150), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(SQLEnum(PaymentMethod), nullable=False)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    transaction_id = Column(String(255), nullable=True, unique=True)
    description = Column(Text, nullable=True)
    payer_user_id = Column(Integer, nullable=True)
    related_registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=True)
    related_contract_id = Column(Integer, ForeignKey("sponsorship_contracts.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    registration = relationship("Registration")
    contract = relationship("SponsorshipContract")

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payment_amount_positive"),
        CheckConstraint(
            "(related_registration_id IS NULL) <> (related_contract_id IS NULL)",
            name="check_payment_single_target",
        ),
    )


# ============ 通知與庫存 ============

class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False, unique=True)
    quantity_on_hand = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("quantity_on_hand >= 0", name="check_inventory_quantity_non_negative"),
    )


class SystemAlert(Base):
    __tablename__ = "system_alerts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    target_role = Column(String(50), nullable=True)
    alert_type = Column(SQLEnum(AlertType), nullable=False)
    message = Column(Text, nullable=False)
    related_event_id = Column(Integer, ForeignKey("events.id"), nullable=True)
    related_round_id = Column(Integer, ForeignKey("event_rounds.id"), nullable=True)
    related_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=True)
    priority = Column(SQLEnum(AlertPriority), nullable=False, default=AlertPriority.MEDIUM)
    scheduled_for = Column(DateTime, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    is_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_system_alerts_scheduled_sent", "scheduled_for", "is_sent", "priority"),
    )


class EventLog(Base):
    """稽核紀錄（只新增不修改），記錄每一次一致性處理"""

    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=True, index=True)
    event_type = Column(String(50), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)
