"""
Role set and authorization predicates.

Owner holds every privilege through an explicit check in has_role; no other
role implies another unless the operation lists it.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set

from .errors import AuthorizationError

logger = logging.getLogger(__name__)


class Role(Enum):
    OWNER = "owner"
    CURATOR = "curator"
    GUARDIAN = "guardian"
    ALLOCATOR = "allocator"


@dataclass
class RoleSet:
    owner: str
    curator: Optional[str] = None
    guardian: Optional[str] = None
    allocators: Set[str] = field(default_factory=set)
    skim_recipient: Optional[str] = None

    def has_role(self, account: Optional[str], role: Role) -> bool:
        if account is None:
            return False
        if account == self.owner:
            return True
        if role is Role.CURATOR:
            return account == self.curator
        if role is Role.GUARDIAN:
            return account == self.guardian
        if role is Role.ALLOCATOR:
            return account in self.allocators
        return False

    def is_authorized(self, account: Optional[str], *roles: Role) -> bool:
        """True if account holds at least one of roles (owner always does)."""
        return any(self.has_role(account, role) for role in roles)

    def require(self, account: Optional[str], *roles: Role, operation: str = "") -> None:
        if not self.is_authorized(account, *roles):
            names = "/".join(role.value for role in roles)
            logger.warning(f"[RoleSet] {account} denied {operation or 'operation'} (requires {names})")
            raise AuthorizationError(f"{account} lacks {names} role for {operation or 'operation'}")
