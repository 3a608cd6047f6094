import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.payments.domain.models.payment import Payment
from billing_engine.modules.payments.domain.repositories.payment_repository import PaymentRepository
from billing_engine.modules.payments.infrastructure.database.models import PaymentModel
from billing_engine.shared.core.exceptions import ConflictError, DatabaseError

logger = logging.getLogger(__name__)

# Domain-only fields that are never persisted
_TRANSIENT_FIELDS = {"client_secret"}


class PaymentRepositoryImpl(PaymentRepository):
    """SQLAlchemy implementation of the payments table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, payment: Payment) -> Payment:
        try:
            async with self.session.begin_nested():
                model = PaymentModel(**payment.model_dump(exclude=_TRANSIENT_FIELDS))
                self.session.add(model)
            logger.info(f"Recorded payment {model.id} for intent {model.stripe_payment_intent_id}")
            created = Payment.model_validate(model)
            created.client_secret = payment.client_secret
            return created
        except IntegrityError:
            raise ConflictError(
                message="Payment intent already recorded",
                resource_type="payment",
                conflict_field="stripe_payment_intent_id",
                existing_value=payment.stripe_payment_intent_id,
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error creating payment: {e}")
            raise DatabaseError(f"Failed to create payment: {e}", operation="insert", table="payments")

    async def get_by_intent_id(self, payment_intent_id: str) -> Optional[Payment]:
        try:
            result = await self.session.execute(
                select(PaymentModel).where(PaymentModel.stripe_payment_intent_id == payment_intent_id)
            )
            model = result.scalar_one_or_none()
            return Payment.model_validate(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting payment {payment_intent_id}: {e}")
            raise DatabaseError(f"Failed to get payment: {e}", operation="select", table="payments")

    async def save(self, payment: Payment) -> Payment:
        try:
            model = await self.session.get(PaymentModel, payment.id)
            if model is None:
                raise DatabaseError(f"Payment {payment.id} vanished before update", operation="update", table="payments")
            for field, value in payment.model_dump(exclude={"id", "created_at"} | _TRANSIENT_FIELDS).items():
                setattr(model, field, value)
            await self.session.flush()
            return Payment.model_validate(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error updating payment {payment.id}: {e}")
            raise DatabaseError(f"Failed to update payment: {e}", operation="update", table="payments")
