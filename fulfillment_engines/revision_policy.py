"""
Revision Policy Engine - how many revision rounds a customer may request.

Pure functions with no I/O.  The caller loads the customer's override
record (if any) and passes the partner defaults explicitly.

Resolution order:
    1. override ``unlimited``  -> always allowed
    2. override ``custom(n)``  -> allowed iff revision_count < n
       (custom(0) is legal and means zero revisions, which is NOT the same
       as having no override)
    3. no override / ``default`` -> the partner default limit, or unlimited
       when the partner switched revision limits off

Usage:
    from fulfillment_engines.revision_policy import (
        RevisionPolicy,
        resolve_revision_allowance,
    )

    allowance = resolve_revision_allowance(
        policy=RevisionPolicy.custom(2),
        revision_count=1,
        default_limit=2,
        enforce_limit=True,
    )
    allowance.allowed    # True
    allowance.remaining  # 1
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from fulfillment_engines.tracer import traced_engine


class RevisionPolicyKind(str, Enum):
    DEFAULT = "default"
    UNLIMITED = "unlimited"
    CUSTOM = "custom"


@dataclass(frozen=True)
class RevisionPolicy:
    """
    Per-customer revision override.

    ``limit`` is set only for CUSTOM and must be >= 0.
    """

    kind: RevisionPolicyKind
    limit: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, RevisionPolicyKind):
            object.__setattr__(self, "kind", RevisionPolicyKind(self.kind))
        if self.kind == RevisionPolicyKind.CUSTOM:
            if self.limit is None:
                raise ValueError("custom revision policy requires a limit")
            if self.limit < 0:
                raise ValueError(
                    f"custom revision limit must be >= 0, got {self.limit}"
                )
        elif self.limit is not None:
            raise ValueError(f"{self.kind.value} revision policy takes no limit")

    @classmethod
    def default(cls) -> RevisionPolicy:
        return cls(RevisionPolicyKind.DEFAULT)

    @classmethod
    def unlimited(cls) -> RevisionPolicy:
        return cls(RevisionPolicyKind.UNLIMITED)

    @classmethod
    def custom(cls, limit: int) -> RevisionPolicy:
        return cls(RevisionPolicyKind.CUSTOM, limit)


@dataclass(frozen=True)
class RevisionAllowance:
    """
    Outcome of resolving a customer's revision entitlement.

    ``limit`` and ``remaining`` are None when revisions are unlimited.
    """

    allowed: bool
    limit: int | None
    used: int
    remaining: int | None
    source: RevisionPolicyKind = RevisionPolicyKind.DEFAULT

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    def as_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "limit": "unlimited" if self.limit is None else self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "source": self.source.value,
        }


@traced_engine(
    "revision_policy",
    "1.0",
    fingerprint_fields=("policy", "revision_count", "default_limit", "enforce_limit"),
)
def resolve_revision_allowance(
    *,
    policy: RevisionPolicy | None,
    revision_count: int,
    default_limit: int,
    enforce_limit: bool = True,
) -> RevisionAllowance:
    """
    Decide whether one more revision round is allowed.

    Args:
        policy: The customer's override, or None if there is none.
        revision_count: Revision rounds already used on the order (>= 0).
        default_limit: Partner-wide default limit (>= 0).
        enforce_limit: False when the partner disabled revision limits;
            the default then becomes unlimited.  Explicit custom overrides
            still apply.

    Raises:
        ValueError: If revision_count or default_limit is negative.
    """
    if revision_count < 0:
        raise ValueError(f"revision_count must be >= 0, got {revision_count}")
    if default_limit < 0:
        raise ValueError(f"default_limit must be >= 0, got {default_limit}")

    kind = policy.kind if policy is not None else RevisionPolicyKind.DEFAULT

    match kind:
        case RevisionPolicyKind.UNLIMITED:
            limit = None
        case RevisionPolicyKind.CUSTOM:
            limit = policy.limit
        case _:
            limit = default_limit if enforce_limit else None

    if limit is None:
        return RevisionAllowance(
            allowed=True,
            limit=None,
            used=revision_count,
            remaining=None,
            source=kind,
        )

    return RevisionAllowance(
        allowed=revision_count < limit,
        limit=limit,
        used=revision_count,
        remaining=max(0, limit - revision_count),
        source=kind,
    )
