from .plan_repository import PlanRepository
from .subscription_repository import SubscriptionRepository
from .user_repository import UserRepository

__all__ = ["PlanRepository", "SubscriptionRepository", "UserRepository"]
