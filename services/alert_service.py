"""
Alert service：產生 SystemAlert 並標記到期

實際發送（email、SMS、push）由外部 dispatcher 負責，這裡只決定有哪些通知、何時到期

排程函式接受 `now`（不帶時區的 UTC）與選用的 monotonic `deadline`；
超過 deadline 時拋出 JobTimeout，由呼叫端 rollback
"""
import logging
import time
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from database import get_settings
from models import (
    AlertPriority,
    AlertType,
    Event,
    EventStatus,
    InventoryItem,
    Registration,
    RegistrationStatus,
    SystemAlert,
)
from core.exceptions import JobTimeout
from time_utils import utcnow

logger = logging.getLogger(__name__)

REMINDER_ROLES = ("participant", "event_organizer")
STOCK_ROLES = ("admin", "super_admin")
LOW_STOCK_DEDUPE = timedelta(hours=1)

PRIORITY_RANK = {
    AlertPriority.CRITICAL: 0,
    AlertPriority.HIGH: 1,
    AlertPriority.MEDIUM: 2,
    AlertPriority.LOW: 3,
}


def check_deadline(deadline: Optional[float], job: str) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise JobTimeout(f"{job} exceeded its time budget")


def malformed_reason(alert: SystemAlert) -> Optional[str]:
    """通知無法交給 dispatcher 的原因；可以交出時返回 None"""
    if alert.user_id is None and not alert.target_role:
        return "no recipient"
    if not (alert.message or "").strip():
        return "empty message"
    return None


# ============ 到期掃描 ============

def sweep_due_alerts(db: Session, now: Optional[datetime] = None, deadline: Optional[float] = None) -> int:
    """
    把排程時間在 `now` 之前（含）且尚未送出的通知標記為已送出

    注意：格式錯誤的通知只記 log、不修改，其餘照常處理

    返回：
        標記為已送出的數量
    """
    now = now or utcnow()
    due = db.query(SystemAlert).filter(
        SystemAlert.scheduled_for.isnot(None),
        SystemAlert.scheduled_for <= now,
        SystemAlert.is_sent.is_(False),
    ).order_by(SystemAlert.scheduled_for, SystemAlert.id).all()

    marked = 0
    for alert in due:
        check_deadline(deadline, "due-sweep")

        reason = malformed_reason(alert)
        if reason:
            logger.warning(f"Skipping alert {alert.id}: {reason}")
            continue

        alert.is_sent = True
        marked += 1

    db.flush()
    logger.info(f"Due sweep at {now}: {marked} alerts marked sent, {len(due) - marked} skipped")
    return marked


# ============ 活動提醒 ============

def reminder_message(event: Event) -> str:
    when = event.event_date.strftime("%A, %B %d, %Y").replace(" 0", " ")
    at = event.start_time.strftime("%I:%M %p")
    return f'Reminder: Your event "{event.name}" is scheduled for {when} at {at}.'


def reminder_exists(db: Session, user_id: int, event_id: int, since: datetime) -> bool:
    return db.query(SystemAlert).filter(
        SystemAlert.alert_type == AlertType.EVENT_REMINDER,
        SystemAlert.user_id == user_id,
        SystemAlert.related_event_id == event_id,
        SystemAlert.created_at > since,
    ).first() is not None


def generate_event_reminders(
    db: Session, now: Optional[datetime] = None, deadline: Optional[float] = None
) -> int:
    """
    提醒已確認的參加者：N 天後開始的已發布活動

    注意：
        - N 為 Settings.reminder_days_ahead（3）
        - 同一 (user, event) 在 Settings.reminder_dedupe_days（2）天內已有 EventReminder 就略過
        - 新提醒排程在 `now`，下一次到期掃描就會送出

    返回：
        建立的提醒數量
    """
    settings = get_settings()
    now = now or utcnow()
    target_day = (now + timedelta(days=settings.reminder_days_ahead)).date()
    since = now - timedelta(days=settings.reminder_dedupe_days)

    rows = (
        db.query(Registration, Event)
        .join(Event, Registration.event_id == Event.id)
        .filter(
            Registration.status == RegistrationStatus.CONFIRMED,
            Event.status == EventStatus.PUBLISHED,
            Event.event_date == target_day,
        )
        .order_by(Registration.id)
        .all()
    )

    created = 0
    for registration, event in rows:
        check_deadline(deadline, "reminder generator")

        if reminder_exists(db, registration.user_id, event.id, since):
            continue

        db.add(SystemAlert(
            user_id=registration.user_id,
            alert_type=AlertType.EVENT_REMINDER,
            message=reminder_message(event),
            related_event_id=event.id,
            priority=AlertPriority.MEDIUM,
            scheduled_for=now,
            created_at=now,
        ))
        # flush，同一使用者的下一筆報名才查得到
        db.flush()
        created += 1

    logger.info(f"Reminder generator for {target_day}: {created} created, {len(rows) - created} deduplicated")
    return created


# ============ 依角色的活動提醒 ============

def schedule_event_reminders(db: Session, event: Event) -> List[SystemAlert]:
    """
    在活動開始前固定時間點發給各角色的提醒

    - 一週前：EventReminder，Medium
    - 一天前：EventReminder，High
    - 一小時前：EventStart，Critical

    每個時間點對 REMINDER_ROLES 中每個角色各一則；重複呼叫不會產生重複通知
    """
    starts_at = event.starts_at
    plan = (
        (timedelta(weeks=1), AlertType.EVENT_REMINDER, AlertPriority.MEDIUM,
         f'Event "{event.name}" starts in 1 week!'),
        (timedelta(days=1), AlertType.EVENT_REMINDER, AlertPriority.HIGH,
         f'Event "{event.name}" starts tomorrow!'),
        (timedelta(hours=1), AlertType.EVENT_START, AlertPriority.CRITICAL,
         f'Event "{event.name}" starts in 1 hour!'),
    )

    created = []
    for offset, alert_type, priority, message in plan:
        scheduled_for = starts_at - offset
        for role in REMINDER_ROLES:
            exists = db.query(SystemAlert).filter(
                SystemAlert.alert_type == alert_type,
                SystemAlert.target_role == role,
                SystemAlert.related_event_id == event.id,
                SystemAlert.scheduled_for == scheduled_for,
            ).first()
            if exists:
                continue
            alert = SystemAlert(
                target_role=role,
                alert_type=alert_type,
                message=message,
                related_event_id=event.id,
                priority=priority,
                scheduled_for=scheduled_for,
            )
            db.add(alert)
            created.append(alert)

    db.flush()
    logger.info(f"Scheduled {len(created)} role reminders for event {event.id}")
    return created


# ============ 庫存 ============

def crossed_low_stock(item: InventoryItem, previous_quantity: int) -> bool:
    """減少庫存後從門檻以上（含）降到門檻以下時為 True"""
    threshold = item.low_stock_threshold
    if threshold is None:
        return False
    return (
        item.quantity_on_hand < previous_quantity
        and item.quantity_on_hand < threshold
        and previous_quantity >= threshold
    )


def raise_low_stock_alerts(
    db: Session, item: InventoryItem, previous_quantity: int, now: Optional[datetime] = None
) -> List[SystemAlert]:
    """
    庫存低於門檻時通知管理員

    注意：該品項已有一小時內未讀的 LowInventory 通知時略過
    """
    if not crossed_low_stock(item, previous_quantity):
        return []

    now = now or utcnow()
    recent = db.query(SystemAlert).filter(
        SystemAlert.alert_type == AlertType.LOW_INVENTORY,
        SystemAlert.related_item_id == item.id,
        SystemAlert.is_read.is_(False),
        SystemAlert.created_at > now - LOW_STOCK_DEDUPE,
    ).first()
    if recent:
        return []

    message = (
        f'Low stock alert: Item "{item.name}" (ID: {item.id}) has reached '
        f"{item.quantity_on_hand} units (Threshold: {item.low_stock_threshold})."
    )
    alerts = [
        SystemAlert(
            target_role=role,
            alert_type=AlertType.LOW_INVENTORY,
            message=message,
            related_item_id=item.id,
            priority=AlertPriority.HIGH,
            created_at=now,
        )
        for role in STOCK_ROLES
    ]
    db.add_all(alerts)
    db.flush()
    logger.warning(f"Item {item.id} ({item.name}) is low on stock: {item.quantity_on_hand}")
    return alerts


# ============ 查詢 ============

def pending_alerts(
    db: Session,
    user_id: Optional[int] = None,
    role: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[SystemAlert]:
    """
    使用者或角色尚未送出、已到期（或未排程）的通知

    排序：優先度（Critical 在前），再依排程時間
    """
    now = now or utcnow()
    query = db.query(SystemAlert).filter(
        SystemAlert.is_sent.is_(False),
        (SystemAlert.scheduled_for.is_(None)) | (SystemAlert.scheduled_for <= now),
    )
    if user_id is not None and role is not None:
        query = query.filter((SystemAlert.user_id == user_id) | (SystemAlert.target_role == role))
    elif user_id is not None:
        query = query.filter(SystemAlert.user_id == user_id)
    elif role is not None:
        query = query.filter(SystemAlert.target_role == role)

    alerts = query.all()
    alerts.sort(key=lambda a: (PRIORITY_RANK[a.priority], a.scheduled_for or datetime.min, a.id))
    return alerts
