from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from app.shared.core.identity import normalize_email


@dataclass(frozen=True)
class DirectoryUser:
    primary_email: str
    github_username: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.primary_email)


@dataclass(frozen=True)
class TargetMembership:
    members: frozenset[str]
    pending_invites: frozenset[str]


class TenantAccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CLOSED = "closed"


@dataclass(frozen=True)
class TenantUser:
    account_id: str
    email: str
    status: TenantAccountStatus
    added_to_org: Optional[datetime] = None
    name: Optional[str] = None

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)


@dataclass(frozen=True)
class ProductActivity:
    product_key: str
    last_active: Optional[str] = None


@dataclass(frozen=True)
class ActivityRecord:
    account_id: str
    products: list[ProductActivity] = field(default_factory=list)


@dataclass(frozen=True)
class InvitedUser:
    username: str
    email: str


@dataclass
class ReconciliationResult:
    invited: list[InvitedUser] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.invited or self.removed or self.errors)


class LifecycleAction(str, Enum):
    SUSPEND = "suspend"
    DELETE = "delete"


@dataclass(frozen=True)
class LifecycleUser:
    email: str
    account_id: str
    last_active: Optional[datetime] = None
    inactive_days: Optional[int] = None


@dataclass
class LifecycleResult:
    """
    Outcome of one lifecycle check.

    `reason` names the policy that produced it ("directory_absence",
    "inactivity_90d", "inactivity_180d") so renderers can label it.
    """
    reason: str
    suspended: list[LifecycleUser] = field(default_factory=list)
    deleted: list[LifecycleUser] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.suspended or self.deleted or self.errors)
