from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from app.config.loader import get_subscription_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanLimits:
    tier: str
    max_meeting_duration_minutes: Optional[int] = None
    max_participants_per_meeting: Optional[int] = None


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = PolicyDecision(True)


@dataclass
class SubscriptionPolicy:
    """
    Plan-limit checks for hosts and participants.

    Nothing is refused unless ``enforced`` is true. The owner's tier comes
    from ``tier_lookup`` (billing is external); owners it does not know get
    ``default_tier``.
    """

    enforced: bool = False
    plans: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    default_tier: str = "free"
    tier_lookup: Optional[Callable[[str], Optional[str]]] = None

    @classmethod
    def from_settings(
        cls, tier_lookup: Optional[Callable[[str], Optional[str]]] = None
    ) -> "SubscriptionPolicy":
        settings = get_subscription_settings()
        return cls(
            enforced=settings["enforced"],
            plans=settings["plans"],
            default_tier=settings["default_tier"],
            tier_lookup=tier_lookup,
        )

    def limits_for(self, owner_uid: str) -> PlanLimits:
        tier = None
        if self.tier_lookup is not None:
            tier = self.tier_lookup(owner_uid)
        if not tier or tier not in self.plans:
            tier = self.default_tier
        values: Dict[str, Any] = dict(self.plans.get(tier) or {})
        return PlanLimits(
            tier=tier,
            max_meeting_duration_minutes=values.get("max_meeting_duration_minutes"),
            max_participants_per_meeting=values.get("max_participants_per_meeting"),
        )

    def can_host_start(self, owner_uid: str, duration_min: int) -> PolicyDecision:
        if not self.enforced:
            return ALLOWED
        limits = self.limits_for(owner_uid)
        limit = limits.max_meeting_duration_minutes
        if limit is not None and duration_min > limit:
            logger.info(
                "Plan '%s' limits meetings to %s minutes; %s requested",
                limits.tier,
                limit,
                duration_min,
            )
            return PolicyDecision(
                False,
                f"The {limits.tier} plan allows meetings up to {limit} minutes",
            )
        return ALLOWED

    def can_participant_join(
        self, owner_uid: str, current_participants: int
    ) -> PolicyDecision:
        if not self.enforced:
            return ALLOWED
        limits = self.limits_for(owner_uid)
        limit = limits.max_participants_per_meeting
        if limit is not None and current_participants >= limit:
            logger.info(
                "Plan '%s' participant limit %s reached", limits.tier, limit
            )
            return PolicyDecision(
                False,
                f"The {limits.tier} plan allows up to {limit} participants",
            )
        return ALLOWED
