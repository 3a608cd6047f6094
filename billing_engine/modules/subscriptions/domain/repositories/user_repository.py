from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from billing_engine.modules.subscriptions.domain.models.user import User


class UserRepository(ABC):
    """Abstract repository interface for the user directory."""

    @abstractmethod
    async def create(self, user: User) -> User:
        pass

    @abstractmethod
    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def get_by_stripe_customer_id(self, stripe_customer_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def set_stripe_customer_id(self, user_id: UUID, stripe_customer_id: str) -> None:
        pass
