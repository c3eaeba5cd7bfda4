from __future__ import annotations


class MembershipsDomainError(Exception):
    """Base error for the memberships domain layer."""


class InvalidTransition(MembershipsDomainError):
    """Raised when a subscription transition is not allowed."""

    def __init__(self, current: str, event: str) -> None:
        super().__init__(f"Transition '{event}' not allowed from state '{current}'")
        self.current = current
        self.event = event


class PlanRetired(MembershipsDomainError):
    """Raised when a retired plan is asked for new subscriptions or period grants."""

    def __init__(self, plan_id: int | None) -> None:
        super().__init__(f"Plan {plan_id} is retired")
        self.plan_id = plan_id


class DuplicateSubscription(MembershipsDomainError):
    """Raised when a user already holds a non-canceled subscription on the storefront."""

    def __init__(self, user_id: int, storefront_id: int) -> None:
        super().__init__(f"User {user_id} already subscribed on storefront {storefront_id}")
        self.user_id = user_id
        self.storefront_id = storefront_id
