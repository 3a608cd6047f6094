import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.payments.domain.models.payment import BillingRecord, PaymentFailure
from billing_engine.modules.payments.domain.repositories.billing_repository import BillingRepository
from billing_engine.modules.payments.infrastructure.database.models import BillingRecordModel, PaymentFailureModel
from billing_engine.shared.core.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class BillingRepositoryImpl(BillingRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_receipt(self, record: BillingRecord) -> bool:
        try:
            async with self.session.begin_nested():
                self.session.add(BillingRecordModel(**record.model_dump()))
            return True
        except IntegrityError:
            logger.info(f"Receipt for invoice {record.stripe_invoice_id} already recorded")
            return False
        except SQLAlchemyError as e:
            logger.error(f"Database error recording receipt {record.stripe_invoice_id}: {e}")
            raise DatabaseError(f"Failed to record receipt: {e}", operation="insert", table="billing_records")

    async def record_failure(self, failure: PaymentFailure) -> bool:
        try:
            async with self.session.begin_nested():
                self.session.add(PaymentFailureModel(**failure.model_dump()))
            return True
        except IntegrityError:
            logger.info(
                f"Failure for invoice {failure.stripe_invoice_id} attempt {failure.attempt_count} already recorded"
            )
            return False
        except SQLAlchemyError as e:
            logger.error(f"Database error recording payment failure {failure.stripe_invoice_id}: {e}")
            raise DatabaseError(f"Failed to record payment failure: {e}", operation="insert", table="payment_failures")

    async def list_receipts_for_customer(self, stripe_customer_id: str, limit: int = 50) -> List[BillingRecord]:
        try:
            result = await self.session.execute(
                select(BillingRecordModel)
                .where(BillingRecordModel.stripe_customer_id == stripe_customer_id)
                .order_by(BillingRecordModel.created_at.desc())
                .limit(limit)
            )
            return [BillingRecord.model_validate(model) for model in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Database error listing receipts for {stripe_customer_id}: {e}")
            raise DatabaseError(f"Failed to list receipts: {e}", operation="select", table="billing_records")

    async def list_failures_for_customer(self, stripe_customer_id: str, limit: int = 50) -> List[PaymentFailure]:
        try:
            result = await self.session.execute(
                select(PaymentFailureModel)
                .where(PaymentFailureModel.stripe_customer_id == stripe_customer_id)
                .order_by(PaymentFailureModel.created_at.desc())
                .limit(limit)
            )
            return [PaymentFailure.model_validate(model) for model in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Database error listing payment failures for {stripe_customer_id}: {e}")
            raise DatabaseError(f"Failed to list payment failures: {e}", operation="select", table="payment_failures")
