import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.subscriptions.domain.models.plan import Plan
from billing_engine.modules.subscriptions.domain.repositories.plan_repository import PlanRepository
from billing_engine.modules.subscriptions.infrastructure.database.models import PlanModel
from billing_engine.shared.core.exceptions import ConflictError, DatabaseError

logger = logging.getLogger(__name__)


class PlanRepositoryImpl(PlanRepository):
    """SQLAlchemy implementation of the plan catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, plan: Plan) -> Plan:
        try:
            async with self.session.begin_nested():
                model = PlanModel(**plan.model_dump())
                self.session.add(model)
            logger.info(f"Created plan {model.id} ({model.name})")
            return Plan.model_validate(model)
        except IntegrityError:
            raise ConflictError(
                message=f"Plan with name '{plan.name}' already exists",
                resource_type="plan",
                conflict_field="name",
                existing_value=plan.name,
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error creating plan {plan.name}: {e}")
            raise DatabaseError(f"Failed to create plan: {e}", operation="insert", table="plans")

    async def get_by_id(self, plan_id: UUID) -> Optional[Plan]:
        try:
            model = await self.session.get(PlanModel, plan_id)
            return Plan.model_validate(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting plan {plan_id}: {e}")
            raise DatabaseError(f"Failed to get plan: {e}", operation="select", table="plans")

    async def get_by_name(self, name: str) -> Optional[Plan]:
        try:
            result = await self.session.execute(select(PlanModel).where(PlanModel.name == name))
            model = result.scalar_one_or_none()
            return Plan.model_validate(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting plan by name {name}: {e}")
            raise DatabaseError(f"Failed to get plan: {e}", operation="select", table="plans")

    async def list(self, active_only: bool = True) -> List[Plan]:
        query = select(PlanModel).order_by(PlanModel.price)
        if active_only:
            query = query.where(PlanModel.is_active.is_(True))
        try:
            result = await self.session.execute(query)
            return [Plan.model_validate(model) for model in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Database error listing plans: {e}")
            raise DatabaseError(f"Failed to list plans: {e}", operation="select", table="plans")
