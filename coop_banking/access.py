"""
Access Control Module

Explicit capability sets per staff role. An ActorContext is resolved once
per session and passed into every command, so no operation ever reads the
acting user from shared state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable

from .errors import AuthorizationError, ValidationError


class Capability(Enum):
    """Operations an actor may be allowed to perform"""
    # Accounts
    MANAGE_ACCOUNTS = "manage_accounts"
    POST_DEPOSIT = "post_deposit"
    POST_WITHDRAWAL = "post_withdrawal"
    VIEW_RECORDS = "view_records"

    # Interest
    POST_INTEREST = "post_interest"
    MANAGE_INTEREST_SETTINGS = "manage_interest_settings"

    # Loans
    QUOTE_LOAN = "quote_loan"
    ORIGINATE_LOAN = "originate_loan"
    APPROVE_LOAN = "approve_loan"
    RELEASE_LOAN = "release_loan"
    RECORD_LOAN_PAYMENT = "record_loan_payment"

    # Dormancy
    RUN_DORMANCY_SWEEP = "run_dormancy_sweep"
    REACTIVATE_ACCOUNT = "reactivate_account"

    # Administration
    VIEW_AUDIT_LOG = "view_audit_log"


class Role(Enum):
    """Staff roles of the cooperative"""
    SUPER_ADMIN = "SUPER_ADMIN"
    TREASURER = "TREASURER"
    BOOKKEEPER = "BOOKKEEPER"
    SYSTEM = "SYSTEM"  # schedulers and batch jobs


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.SUPER_ADMIN: frozenset(Capability),
    Role.TREASURER: frozenset({
        Capability.MANAGE_ACCOUNTS,
        Capability.POST_DEPOSIT,
        Capability.POST_WITHDRAWAL,
        Capability.VIEW_RECORDS,
        Capability.POST_INTEREST,
        Capability.MANAGE_INTEREST_SETTINGS,
        Capability.QUOTE_LOAN,
        Capability.ORIGINATE_LOAN,
        Capability.APPROVE_LOAN,
        Capability.RELEASE_LOAN,
        Capability.RECORD_LOAN_PAYMENT,
        Capability.RUN_DORMANCY_SWEEP,
        Capability.REACTIVATE_ACCOUNT,
    }),
    Role.BOOKKEEPER: frozenset({
        Capability.MANAGE_ACCOUNTS,
        Capability.POST_DEPOSIT,
        Capability.POST_WITHDRAWAL,
        Capability.VIEW_RECORDS,
        Capability.QUOTE_LOAN,
        Capability.ORIGINATE_LOAN,
        Capability.RECORD_LOAN_PAYMENT,
    }),
    Role.SYSTEM: frozenset({
        Capability.VIEW_RECORDS,
        Capability.POST_INTEREST,
        Capability.RUN_DORMANCY_SWEEP,
    }),
}


@dataclass(frozen=True)
class ActorContext:
    """The acting user and the capabilities resolved for them"""
    user_id: str
    role: Role
    capabilities: FrozenSet[Capability] = field(default=frozenset())

    @classmethod
    def for_role(cls, user_id: str, role: Role,
                 extra: Iterable[Capability] = ()) -> 'ActorContext':
        """Resolve the capability set for ``role`` once, plus any explicit grants"""
        if not user_id:
            raise ValidationError("Actor user id is required")
        return cls(
            user_id=user_id,
            role=role,
            capabilities=ROLE_CAPABILITIES[role] | frozenset(extra)
        )

    @classmethod
    def system(cls, user_id: str = "System") -> 'ActorContext':
        return cls.for_role(user_id, Role.SYSTEM)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """Raise AuthorizationError unless the actor holds ``capability``"""
        if capability not in self.capabilities:
            raise AuthorizationError(
                f"{self.user_id} ({self.role.value}) lacks capability {capability.value}",
                details={"capability": capability.value, "role": self.role.value}
            )
