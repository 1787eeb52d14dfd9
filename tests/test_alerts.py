"""
Alerts: due sweep, reminder generation, low stock and the job scheduler.
"""
from datetime import date, datetime, time, timedelta

import pytest

from models import (
    AlertPriority,
    AlertType,
    EventStatus,
    RegistrationStatus,
    SystemAlert,
)
from core.alert_manager import AlertManager, InventoryManager
from core.event_manager import EventManager
from core.exceptions import InvalidStateTransition, ValidationFailed
from core.scheduler import DUE_SWEEP, REMINDERS, JobScheduler
from services.alert_service import (
    generate_event_reminders,
    pending_alerts,
    reminder_message,
    sweep_due_alerts,
)

from conftest import make_event, make_published_event, register

NOW = datetime(2026, 5, 5, 8, 0)


def add_alert(db, scheduled_for=None, user_id=1, target_role=None, message="Hello",
              priority=AlertPriority.MEDIUM, is_sent=False):
    alert = SystemAlert(
        user_id=user_id,
        target_role=target_role,
        alert_type=AlertType.GENERAL,
        message=message,
        priority=priority,
        scheduled_for=scheduled_for,
        is_sent=is_sent,
    )
    db.add(alert)
    db.commit()
    return alert


def confirmed_participant(db, event, user_id):
    registration = register(db, event.id, user_id=user_id)
    registration.status = RegistrationStatus.CONFIRMED
    db.commit()
    return registration


# ==========================================
# Due sweep
# ==========================================

def test_sweep_marks_due_alerts_sent(db):
    due = add_alert(db, scheduled_for=NOW - timedelta(minutes=5))
    exactly_now = add_alert(db, scheduled_for=NOW)
    later = add_alert(db, scheduled_for=NOW + timedelta(minutes=5))
    unscheduled = add_alert(db)

    assert sweep_due_alerts(db, now=NOW) == 2
    db.commit()

    assert due.is_sent and exactly_now.is_sent
    assert not later.is_sent
    assert not unscheduled.is_sent


def test_sweep_skips_malformed_alerts(db):
    orphan = add_alert(db, scheduled_for=NOW, user_id=None)
    blank = add_alert(db, scheduled_for=NOW, message="   ")
    good = add_alert(db, scheduled_for=NOW)

    assert sweep_due_alerts(db, now=NOW) == 1
    db.commit()

    assert good.is_sent
    assert not orphan.is_sent
    assert not blank.is_sent


def test_role_alert_is_well_formed(db):
    alert = add_alert(db, scheduled_for=NOW, user_id=None, target_role="admin")

    assert sweep_due_alerts(db, now=NOW) == 1
    db.commit()
    assert alert.is_sent


# ==========================================
# Reminder generator
# ==========================================

def test_reminder_message_format(db):
    event = make_event(db, name="Hackathon", event_date=date(2026, 5, 8), start_time=time(9, 0))

    assert reminder_message(event) == (
        'Reminder: Your event "Hackathon" is scheduled for Friday, May 8, 2026 at 09:00 AM.'
    )


def test_reminders_for_confirmed_participants_three_days_out(db):
    event = make_published_event(db, event_date=date(2026, 5, 8))
    confirmed_participant(db, event, user_id=1)
    register(db, event.id, user_id=2)  # still pending

    created = generate_event_reminders(db, now=NOW)
    db.commit()

    reminders = db.query(SystemAlert).filter(SystemAlert.alert_type == AlertType.EVENT_REMINDER).all()
    assert created == 1
    assert [r.user_id for r in reminders] == [1]
    assert reminders[0].scheduled_for == NOW
    assert reminders[0].related_event_id == event.id


def test_reminders_are_not_repeated_within_two_days(db):
    event = make_published_event(db, event_date=date(2026, 5, 8))
    confirmed_participant(db, event, user_id=1)

    assert generate_event_reminders(db, now=NOW) == 1
    db.commit()
    assert generate_event_reminders(db, now=NOW + timedelta(hours=12)) == 0


def test_reminders_ignore_other_days_and_draft_events(db):
    other_day = make_published_event(db, name="Later", event_date=date(2026, 5, 9))
    confirmed_participant(db, other_day, user_id=1)
    draft = make_event(db, name="Draft", event_date=date(2026, 5, 8))
    confirmed_participant(db, draft, user_id=2)

    assert generate_event_reminders(db, now=NOW) == 0


def test_generated_reminders_are_released_by_the_sweep(db):
    event = make_published_event(db, event_date=date(2026, 5, 8))
    confirmed_participant(db, event, user_id=1)

    generate_event_reminders(db, now=NOW)
    db.commit()

    assert sweep_due_alerts(db, now=NOW + timedelta(hours=1)) == 1


# ==========================================
# Event reminder schedule
# ==========================================

def test_schedule_event_reminders_for_each_role(db):
    event = make_published_event(db, event_date=date(2026, 5, 8), start_time=time(10, 0))

    alerts = AlertManager.schedule_event_reminders(db, event.id)

    assert len(alerts) == 6
    by_time = {(a.target_role, a.scheduled_for): a for a in alerts}
    hour_before = by_time[("participant", datetime(2026, 5, 8, 9, 0))]
    assert hour_before.alert_type == AlertType.EVENT_START
    assert hour_before.priority == AlertPriority.CRITICAL
    week_before = by_time[("event_organizer", datetime(2026, 5, 1, 10, 0))]
    assert week_before.priority == AlertPriority.MEDIUM


def test_schedule_event_reminders_is_idempotent(db):
    event = make_published_event(db)

    AlertManager.schedule_event_reminders(db, event.id)

    assert AlertManager.schedule_event_reminders(db, event.id) == []
    assert db.query(SystemAlert).count() == 6


def test_no_reminders_for_cancelled_event(db):
    event = make_event(db)
    EventManager.transition_event(db, event.id, EventStatus.CANCELLED)

    with pytest.raises(InvalidStateTransition):
        AlertManager.schedule_event_reminders(db, event.id)


# ==========================================
# Pending alerts
# ==========================================

def test_pending_alerts_order_by_priority(db):
    low = add_alert(db, scheduled_for=NOW - timedelta(hours=2), user_id=5, priority=AlertPriority.LOW)
    critical = add_alert(db, scheduled_for=NOW - timedelta(hours=1), user_id=5, priority=AlertPriority.CRITICAL)
    high = add_alert(db, user_id=5, priority=AlertPriority.HIGH)
    add_alert(db, scheduled_for=NOW + timedelta(hours=1), user_id=5, priority=AlertPriority.CRITICAL)
    add_alert(db, scheduled_for=NOW, user_id=5, is_sent=True)
    add_alert(db, scheduled_for=NOW, user_id=6)

    alerts = pending_alerts(db, user_id=5, now=NOW)

    assert [a.id for a in alerts] == [critical.id, high.id, low.id]


def test_read_alert_stays_pending_until_sent(db):
    alert = add_alert(db, scheduled_for=NOW - timedelta(hours=1), user_id=7)
    AlertManager.mark_read(db, alert.id)

    assert [a.id for a in pending_alerts(db, user_id=7, now=NOW)] == [alert.id]

    alert.is_sent = True
    db.commit()

    assert pending_alerts(db, user_id=7, now=NOW) == []


def test_mark_read(db):
    alert = add_alert(db)

    AlertManager.mark_read(db, alert.id)

    assert alert.is_read is True


# ==========================================
# Inventory
# ==========================================

def test_low_stock_alerts_admins_once(db):
    item = InventoryManager.create_item(db, "Lanyards", quantity_on_hand=10, low_stock_threshold=5)

    InventoryManager.adjust_quantity(db, item.id, -6)
    InventoryManager.adjust_quantity(db, item.id, -1)

    alerts = db.query(SystemAlert).filter(SystemAlert.alert_type == AlertType.LOW_INVENTORY).all()
    assert sorted(a.target_role for a in alerts) == ["admin", "super_admin"]
    assert all(a.priority == AlertPriority.HIGH for a in alerts)
    assert 'Item "Lanyards"' in alerts[0].message


def test_low_stock_not_repeated_within_the_hour(db):
    item = InventoryManager.create_item(db, "Badges", quantity_on_hand=10, low_stock_threshold=5)

    InventoryManager.adjust_quantity(db, item.id, -6)
    InventoryManager.adjust_quantity(db, item.id, 10)
    InventoryManager.adjust_quantity(db, item.id, -10)

    assert db.query(SystemAlert).count() == 2


def test_stock_cannot_go_negative(db):
    item = InventoryManager.create_item(db, "Cups", quantity_on_hand=3)

    with pytest.raises(ValidationFailed):
        InventoryManager.adjust_quantity(db, item.id, -4)

    db.refresh(item)
    assert item.quantity_on_hand == 3


# ==========================================
# Scheduler
# ==========================================

@pytest.fixture
def scheduler(file_session_factory):
    return JobScheduler(file_session_factory)


def seed_due_alerts(session_factory, count=3):
    session = session_factory()
    try:
        for _ in range(count):
            add_alert(session, scheduled_for=NOW - timedelta(minutes=1))
    finally:
        session.close()


def count_sent(session_factory):
    session = session_factory()
    try:
        return session.query(SystemAlert).filter(SystemAlert.is_sent.is_(True)).count()
    finally:
        session.close()


def test_run_job_commits(scheduler, file_session_factory):
    seed_due_alerts(file_session_factory)

    result = scheduler.run_job(DUE_SWEEP, now=NOW)

    assert (result.status, result.count) == ("ok", 3)
    assert count_sent(file_session_factory) == 3


def test_run_job_skips_while_running(scheduler, file_session_factory):
    seed_due_alerts(file_session_factory)
    job = scheduler.jobs[DUE_SWEEP]

    job.running.acquire()
    try:
        result = scheduler.run_job(DUE_SWEEP, now=NOW)
    finally:
        job.running.release()

    assert result.status == "skipped"
    assert count_sent(file_session_factory) == 0


def test_run_job_past_deadline_rolls_back(file_session_factory):
    seed_due_alerts(file_session_factory)
    # deadline already expired when the job starts
    scheduler = JobScheduler(file_session_factory, timeout_seconds=-1)

    result = scheduler.run_job(DUE_SWEEP, now=NOW)

    assert result.status == "timeout"
    assert count_sent(file_session_factory) == 0


def test_reminder_job(scheduler, file_session_factory):
    session = file_session_factory()
    try:
        event = make_published_event(session, event_date=date(2026, 5, 8))
        confirmed_participant(session, event, user_id=1)
    finally:
        session.close()

    assert scheduler.run_job(REMINDERS, now=NOW).count == 1
    assert scheduler.run_job(REMINDERS, now=NOW).count == 0


def test_unknown_job(scheduler):
    with pytest.raises(KeyError):
        scheduler.run_job("nightly-report")
