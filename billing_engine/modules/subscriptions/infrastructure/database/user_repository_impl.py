import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.subscriptions.domain.models.user import User
from billing_engine.modules.subscriptions.domain.repositories.user_repository import UserRepository
from billing_engine.modules.subscriptions.infrastructure.database.models import UserModel
from billing_engine.shared.core.exceptions import ConflictError, DatabaseError

logger = logging.getLogger(__name__)


class UserRepositoryImpl(UserRepository):
    """SQLAlchemy implementation of the user directory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: User) -> User:
        try:
            async with self.session.begin_nested():
                model = UserModel(**user.model_dump())
                self.session.add(model)
            return User.model_validate(model)
        except IntegrityError:
            raise ConflictError(
                message="User with this email already exists",
                resource_type="user",
                conflict_field="email",
                existing_value=user.email,
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error creating user {user.email}: {e}")
            raise DatabaseError(f"Failed to create user: {e}", operation="insert", table="users")

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        try:
            model = await self.session.get(UserModel, user_id)
            return User.model_validate(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting user {user_id}: {e}")
            raise DatabaseError(f"Failed to get user: {e}", operation="select", table="users")

    async def get_by_stripe_customer_id(self, stripe_customer_id: str) -> Optional[User]:
        try:
            result = await self.session.execute(
                select(UserModel).where(UserModel.stripe_customer_id == stripe_customer_id)
            )
            model = result.scalar_one_or_none()
            return User.model_validate(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting user by customer {stripe_customer_id}: {e}")
            raise DatabaseError(f"Failed to get user: {e}", operation="select", table="users")

    async def set_stripe_customer_id(self, user_id: UUID, stripe_customer_id: str) -> None:
        try:
            await self.session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(stripe_customer_id=stripe_customer_id)
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error updating customer id for user {user_id}: {e}")
            raise DatabaseError(f"Failed to update user: {e}", operation="update", table="users")
