import re
from collections.abc import Mapping
from enum import Enum

from rule_corpus.errors import InvalidImpactError


_SEPARATORS = re.compile(r"[\s_-]+")


class ImpactTier(str, Enum):
    """Canonical impact tiers, most severe first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM_HIGH = "MEDIUM-HIGH"
    MEDIUM = "MEDIUM"
    LOW_MEDIUM = "LOW-MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Position in severity order, 0 being CRITICAL."""
        return _RANKS[self]

    def __str__(self) -> str:
        return self.value


_RANKS = {tier: index for index, tier in enumerate(ImpactTier)}
_BY_TOKEN = {tier.value: tier for tier in ImpactTier}


def canonical_token(raw: str) -> str:
    """
    Fold an impact string to its token form.

    Case is upper-cased and any run of whitespace, hyphens or underscores
    becomes a single hyphen, so "Medium high" and "medium_HIGH" both give
    "MEDIUM-HIGH".
    """
    return _SEPARATORS.sub("-", raw.strip()).strip("-").upper()


def normalize_impact(raw: str, aliases: Mapping[str, str] | None = None) -> ImpactTier:
    """
    Normalize a declared impact string to an ImpactTier.

    Args:
        raw: The impact as written by the author.
        aliases: Optional synonym table, e.g. {"BLOCKER": "CRITICAL"}. Keys and
            values are folded with canonical_token before lookup.

    Returns:
        The matching tier.

    Raises:
        InvalidImpactError: If the string matches neither a tier nor an alias.
            Unknown tokens are never coerced to a nearby tier.
    """
    token = canonical_token(raw)
    tier = _BY_TOKEN.get(token)
    if tier is not None:
        return tier

    if aliases:
        for alias, target in aliases.items():
            if canonical_token(alias) == token:
                tier = _BY_TOKEN.get(canonical_token(target))
                if tier is not None:
                    return tier

    valid = ", ".join(_BY_TOKEN)
    msg = f'Invalid impact "{raw}". Must be one of: {valid}'
    raise InvalidImpactError(msg, fragment=raw)
