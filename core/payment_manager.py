"""
Payment Manager：記錄付款並同步報名狀態

規則：
1. 付款只能對應報名或贊助合約其中之一，其他情況在寫入資料庫前就拒絕
2. 狀態只能往前走（見 PaymentStateMachine）
3. 報名為 pending/waitlisted 時，付款 pending -> completed 會在同一個
   transaction 內把報名改為 confirmed/paid
4. 贊助合約由人工結算，付款完成不影響其他資料
"""
import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import transactional
from models import (
    EventLog,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Registration,
    RegistrationPaymentStatus,
    RegistrationStatus,
    SponsorshipContract,
)
from core.exceptions import (
    ContractNotFound,
    DuplicateTransaction,
    InvalidPaymentTarget,
    PaymentNotFound,
    RegistrationNotFound,
    ValidationFailed,
)
from core.locks import with_payment_lock, with_registration_lock
from core.state_machine import PaymentStateMachine

logger = logging.getLogger(__name__)

CONFIRMABLE_STATUSES = (RegistrationStatus.PENDING, RegistrationStatus.WAITLISTED)


def validate_payment_target(registration_id: Optional[int], contract_id: Optional[int]) -> None:
    """
    拋出：
        InvalidPaymentTarget：沒有對象或同時有兩個對象
    """
    if registration_id is None and contract_id is None:
        raise InvalidPaymentTarget(
            "Payment must be related to either a registration or a sponsorship contract"
        )
    if registration_id is not None and contract_id is not None:
        raise InvalidPaymentTarget(
            "Payment cannot be related to both a registration and a sponsorship contract"
        )


class PaymentManager:

    @staticmethod
    def record_payment(
        db: Session,
        amount,
        method: PaymentMethod,
        registration_id: Optional[int] = None,
        contract_id: Optional[int] = None,
        status: PaymentStatus = PaymentStatus.PENDING,
        transaction_id: Optional[str] = None,
        payer_user_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> Payment:
        """
        記錄一筆付款

        直接以 completed 記錄的付款，和之後 pending -> completed 一樣會確認報名

        拋出：
            InvalidPaymentTarget
            ValidationFailed：金額不是正數，或以 refunded 記錄
            RegistrationNotFound / ContractNotFound
            DuplicateTransaction：transaction_id 已被記錄
        """
        validate_payment_target(registration_id, contract_id)
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationFailed(f"Payment amount must be positive, got {amount}")
        if status == PaymentStatus.REFUNDED:
            raise ValidationFailed("A payment cannot be recorded as refunded")

        try:
            return PaymentManager._insert(
                db, amount, method, registration_id, contract_id,
                status, transaction_id, payer_user_id, description,
            )
        except IntegrityError:
            raise DuplicateTransaction(f"Transaction {transaction_id} is already recorded")

    @staticmethod
    @transactional
    def _insert(db, amount, method, registration_id, contract_id,
                status, transaction_id, payer_user_id, description) -> Payment:
        if registration_id is not None:
            if not db.query(Registration).filter(Registration.id == registration_id).first():
                raise RegistrationNotFound(registration_id)
        else:
            if not db.query(SponsorshipContract).filter(SponsorshipContract.id == contract_id).first():
                raise ContractNotFound(contract_id)

        if transaction_id is not None:
            if db.query(Payment).filter(Payment.transaction_id == transaction_id).first():
                raise DuplicateTransaction(f"Transaction {transaction_id} is already recorded")

        payment = Payment(
            amount=amount,
            method=method,
            status=status,
            transaction_id=transaction_id,
            payer_user_id=payer_user_id,
            description=description,
            related_registration_id=registration_id,
            related_contract_id=contract_id,
        )
        db.add(payment)
        db.flush()

        logger.info(
            f"Payment {payment.id} recorded: {amount} ({status.value}) for "
            f"{'registration ' + str(registration_id) if registration_id else 'contract ' + str(contract_id)}"
        )

        if status == PaymentStatus.COMPLETED:
            PaymentManager._reconcile(db, payment)
        return payment

    @staticmethod
    @transactional
    def update_payment_status(db: Session, payment_id: int, target: PaymentStatus) -> Payment:
        """
        推進付款狀態並同步報名

        注意：再次收到目前的狀態不做事，金流重複回報 "completed" 只會確認一次報名

        拋出：
            PaymentNotFound
            InvalidStateTransition
        """
        payment = with_payment_lock(payment_id, db).first()
        if not payment:
            raise PaymentNotFound(payment_id)

        if PaymentStateMachine.is_repeat(payment, target):
            logger.info(f"Payment {payment_id} already {target.value}, nothing to do")
            return payment

        previous = payment.status
        payment = PaymentStateMachine.transition(payment_id, target, db)

        if previous != PaymentStatus.COMPLETED and target == PaymentStatus.COMPLETED:
            PaymentManager._reconcile(db, payment)
        return payment

    @staticmethod
    def _reconcile(db: Session, payment: Payment) -> Optional[Registration]:
        """報名仍在等待付款時將其確認"""
        if payment.related_registration_id is None:
            return None

        registration = with_registration_lock(payment.related_registration_id, db).first()
        if not registration or registration.status not in CONFIRMABLE_STATUSES:
            return None

        previous = registration.status
        registration.status = RegistrationStatus.CONFIRMED
        registration.payment_status = RegistrationPaymentStatus.PAID
        db.add(EventLog(
            event_id=registration.event_id,
            event_type="REGISTRATION_CONFIRMED_BY_PAYMENT",
            data={
                "registration_id": registration.id,
                "payment_id": payment.id,
                "from": previous.value,
            },
        ))
        db.flush()

        logger.info(
            f"Registration {registration.id} confirmed by payment {payment.id} "
            f"(was {previous.value})"
        )
        return registration

    @staticmethod
    def get_payment(db: Session, payment_id: int) -> Payment:
        payment = db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise PaymentNotFound(payment_id)
        return payment

    @staticmethod
    def financial_summary(db: Session) -> Dict[str, Decimal]:
        """已完成的收入，依付款對象分開統計"""
        def total(*criteria) -> Decimal:
            value = db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
                Payment.status == PaymentStatus.COMPLETED, *criteria
            ).scalar()
            return Decimal(str(value)).quantize(Decimal("0.01"))

        return {
            "registration_revenue": total(Payment.related_registration_id.isnot(None)),
            "sponsorship_revenue": total(Payment.related_contract_id.isnot(None)),
        }
