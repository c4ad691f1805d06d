"""
Capability checks.

Role → permission patterns are data; ``can_perform`` is the only place that
interprets them. A pattern is either ``*``, an exact action such as
``payouts:request``, or a resource wildcard such as ``transactions:*``.
"""

from typing import Optional

from pydantic import BaseModel

from seller_ledger.errors import ForbiddenError

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset({"*"}),
    "finance_manager": frozenset({"financials:*", "transactions:*", "payouts:*", "sellers:*"}),
    "accountant": frozenset({"financials:*", "transactions:read", "transactions:write"}),
    "order_manager": frozenset({"orders:*", "returns:*"}),
    "seller": frozenset({"transactions:read", "payouts:read", "sellers:read"}),
    "customer": frozenset(),
}


class Actor(BaseModel):
    id: str
    role: str
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


SYSTEM = Actor(id="system", role="admin", name="System")


def can_perform(actor: Actor, action: str) -> bool:
    patterns = ROLE_PERMISSIONS.get(actor.role, frozenset())
    if "*" in patterns or action in patterns:
        return True
    resource = action.split(":", 1)[0]
    return f"{resource}:*" in patterns


def require(actor: Actor, action: str) -> None:
    if not can_perform(actor, action):
        raise ForbiddenError(f"Role '{actor.role}' may not perform '{action}'")


def is_self_service(actor: Actor) -> bool:
    """Sellers act only on their own records."""
    return actor.role == "seller"
