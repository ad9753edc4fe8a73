"""Tenant prompt quotas.

QuotaService answers "how many more prompts may this user hold?", with
UNLIMITED (-1) for tiers without a ceiling. apply_quota() turns that answer
into an accept/drop split of an extracted prompt list.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

import yaml

from promptvault.importer.errors import QuotaExceededError
from promptvault.importer.store import DEFAULT_TIER, PromptStore

logger = logging.getLogger(__name__)

UNLIMITED = -1

TIERS_PATH = Path(__file__).parent.parent / "tiers.yml"

T = TypeVar("T")


@dataclass(frozen=True)
class Tier:
    key: str
    name: str
    prompt_limit: int


@dataclass(frozen=True)
class QuotaUsage:
    """Tier ceiling and prompts already stored. None where the service cannot tell."""

    limit: int | None = None
    used: int | None = None


@dataclass
class QuotaDecision:
    accepted: list = field(default_factory=list)
    dropped: int = 0
    warning: str | None = None


def load_tiers(path: Path = TIERS_PATH) -> dict[str, Tier]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    tiers = {}
    for key, entry in data.items():
        limits = (entry or {}).get("limits") or {}
        tiers[key] = Tier(
            key=key,
            name=(entry or {}).get("name") or key.title(),
            prompt_limit=int(limits.get("prompts", UNLIMITED)),
        )
    return tiers


class QuotaService(ABC):
    @abstractmethod
    async def remaining_slots(self, user_id: str) -> int:
        """Prompts the user may still add, or UNLIMITED."""
        ...

    async def describe_limit(self, user_id: str) -> str:
        return "prompt limit for your plan"

    async def usage(self, user_id: str) -> QuotaUsage:
        return QuotaUsage()


class TierQuotaService(QuotaService):
    """Limits come from the user's subscription tier."""

    def __init__(
        self,
        store: PromptStore,
        tier_lookup: Callable[[str], Awaitable[str]] | None = None,
        tiers: dict[str, Tier] | None = None,
    ) -> None:
        self._store = store
        self._tier_lookup = tier_lookup or store.get_user_tier
        self._tiers = tiers if tiers is not None else load_tiers()

    async def tier_for(self, user_id: str) -> Tier:
        key = await self._tier_lookup(user_id)
        tier = self._tiers.get(key)
        if tier is None:
            logger.warning("Unknown tier %r for user %s, using %s", key, user_id, DEFAULT_TIER)
            tier = self._tiers[DEFAULT_TIER]
        return tier

    async def remaining_slots(self, user_id: str) -> int:
        tier = await self.tier_for(user_id)
        if tier.prompt_limit == UNLIMITED:
            return UNLIMITED
        current = await self._store.count_prompts(user_id)
        return max(0, tier.prompt_limit - current)

    async def usage(self, user_id: str) -> QuotaUsage:
        tier = await self.tier_for(user_id)
        return QuotaUsage(limit=tier.prompt_limit, used=await self._store.count_prompts(user_id))

    async def describe_limit(self, user_id: str) -> str:
        tier = await self.tier_for(user_id)
        if tier.prompt_limit == UNLIMITED:
            return f"unlimited prompt limit for the {tier.key} tier"
        return f"{tier.prompt_limit} prompt limit for the {tier.key} tier"


def apply_quota(
    prompts: Sequence[T],
    remaining: int,
    limit_description: str,
    usage: QuotaUsage | None = None,
) -> QuotaDecision:
    """Accept as many prompts as the remaining quota allows, in order.

    Raises QuotaExceededError when no slots are left.
    """
    if remaining == UNLIMITED:
        return QuotaDecision(accepted=list(prompts))
    if remaining <= 0:
        raise QuotaExceededError(
            f"You've reached the {limit_description}. Please upgrade to import more prompts.",
            limit=usage.limit if usage else None,
            current=usage.used if usage else None,
        )
    if remaining >= len(prompts):
        return QuotaDecision(accepted=list(prompts))

    dropped = len(prompts) - remaining
    warning = (
        f"Only {remaining} of {len(prompts)} prompts imported due to the "
        f"{limit_description}; {dropped} prompts were skipped."
    )
    logger.warning(warning)
    return QuotaDecision(accepted=list(prompts[:remaining]), dropped=dropped, warning=warning)
