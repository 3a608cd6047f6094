from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from billing_engine.modules.subscriptions.domain.models.plan import Plan


class PlanRepository(ABC):
    """Abstract repository interface for the plan catalog."""

    @abstractmethod
    async def create(self, plan: Plan) -> Plan:
        pass

    @abstractmethod
    async def get_by_id(self, plan_id: UUID) -> Optional[Plan]:
        pass

    @abstractmethod
    async def get_by_name(self, name: str) -> Optional[Plan]:
        pass

    @abstractmethod
    async def list(self, active_only: bool = True) -> List[Plan]:
        pass
