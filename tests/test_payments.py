"""
Payments: target validation, forward-only status and registration reconciliation.
"""
from decimal import Decimal

import pytest

from models import (
    EventLog,
    Payment,
    PaymentMethod,
    PaymentStatus,
    RegistrationPaymentStatus,
    RegistrationStatus,
    SponsorshipContract,
)
from core.exceptions import (
    DuplicateTransaction,
    InvalidPaymentTarget,
    InvalidStateTransition,
    RegistrationNotFound,
    ValidationFailed,
)
from core.payment_manager import PaymentManager

from conftest import make_published_event, register


@pytest.fixture
def registration(db, published_event):
    return register(db, published_event.id, user_id=21)


@pytest.fixture
def contract(db):
    contract = SponsorshipContract(sponsor_name="Acme", amount=Decimal("100000"))
    db.add(contract)
    db.commit()
    return contract


def pay(db, amount="500", **kwargs):
    return PaymentManager.record_payment(
        db, amount=Decimal(amount), method=PaymentMethod.ONLINE_GATEWAY, **kwargs
    )


def test_payment_needs_a_target(db):
    with pytest.raises(InvalidPaymentTarget):
        pay(db)
    assert db.query(Payment).count() == 0


def test_payment_cannot_target_both(db, registration, contract):
    with pytest.raises(InvalidPaymentTarget):
        pay(db, registration_id=registration.id, contract_id=contract.id)
    assert db.query(Payment).count() == 0


def test_payment_amount_must_be_positive(db, registration):
    with pytest.raises(ValidationFailed):
        pay(db, amount="0", registration_id=registration.id)


def test_payment_for_unknown_registration(db):
    with pytest.raises(RegistrationNotFound):
        pay(db, registration_id=999)


def test_duplicate_transaction_id(db, registration):
    pay(db, registration_id=registration.id, transaction_id="TX-1")

    with pytest.raises(DuplicateTransaction):
        pay(db, registration_id=registration.id, transaction_id="TX-1")


def test_completion_confirms_pending_registration(db, registration):
    payment = pay(db, registration_id=registration.id)
    assert registration.status == RegistrationStatus.PENDING

    PaymentManager.update_payment_status(db, payment.id, PaymentStatus.COMPLETED)
    db.refresh(registration)

    assert registration.status == RegistrationStatus.CONFIRMED
    assert registration.payment_status == RegistrationPaymentStatus.PAID


def test_completion_confirms_waitlisted_registration(db):
    event = make_published_event(db, max_participants=1, registration_fee=Decimal("100"))
    register(db, event.id, user_id=1)
    waitlisted = register(db, event.id, user_id=2)
    assert waitlisted.status == RegistrationStatus.WAITLISTED

    pay(db, amount="100", registration_id=waitlisted.id, status=PaymentStatus.COMPLETED)
    db.refresh(waitlisted)

    assert waitlisted.status == RegistrationStatus.CONFIRMED
    assert waitlisted.payment_status == RegistrationPaymentStatus.PAID


def test_repeated_completion_reconciles_once(db, registration):
    payment = pay(db, registration_id=registration.id)

    PaymentManager.update_payment_status(db, payment.id, PaymentStatus.COMPLETED)
    PaymentManager.update_payment_status(db, payment.id, PaymentStatus.COMPLETED)

    logs = db.query(EventLog).filter(EventLog.event_type == "REGISTRATION_CONFIRMED_BY_PAYMENT").count()
    assert logs == 1


def test_checked_in_registration_is_not_touched(db, registration):
    registration.status = RegistrationStatus.CHECKED_IN
    db.commit()

    pay(db, registration_id=registration.id, status=PaymentStatus.COMPLETED)
    db.refresh(registration)

    assert registration.status == RegistrationStatus.CHECKED_IN


def test_failed_payment_leaves_registration_pending(db, registration):
    payment = pay(db, registration_id=registration.id)

    PaymentManager.update_payment_status(db, payment.id, PaymentStatus.FAILED)
    db.refresh(registration)

    assert registration.status == RegistrationStatus.PENDING


def test_status_only_moves_forward(db, registration):
    payment = pay(db, registration_id=registration.id)
    PaymentManager.update_payment_status(db, payment.id, PaymentStatus.COMPLETED)

    with pytest.raises(InvalidStateTransition):
        PaymentManager.update_payment_status(db, payment.id, PaymentStatus.PENDING)

    refunded = PaymentManager.update_payment_status(db, payment.id, PaymentStatus.REFUNDED)
    assert refunded.status == PaymentStatus.REFUNDED


def test_payment_cannot_be_recorded_as_refunded(db, registration):
    with pytest.raises(ValidationFailed):
        pay(db, registration_id=registration.id, status=PaymentStatus.REFUNDED)


def test_contract_payment_changes_nothing_else(db, contract):
    payment = pay(db, amount="25000", contract_id=contract.id)

    PaymentManager.update_payment_status(db, payment.id, PaymentStatus.COMPLETED)
    db.refresh(contract)

    assert contract.status == "pending"
    assert db.query(EventLog).filter(
        EventLog.event_type == "REGISTRATION_CONFIRMED_BY_PAYMENT"
    ).count() == 0


def test_financial_summary_counts_completed_only(db, registration, contract):
    pay(db, amount="500", registration_id=registration.id, status=PaymentStatus.COMPLETED)
    pay(db, amount="250", registration_id=registration.id)
    pay(db, amount="10000", contract_id=contract.id, status=PaymentStatus.COMPLETED)

    summary = PaymentManager.financial_summary(db)

    assert summary == {
        "registration_revenue": Decimal("500.00"),
        "sponsorship_revenue": Decimal("10000.00"),
    }
