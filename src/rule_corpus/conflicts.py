import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace

from rule_corpus.loader import RuleDocument


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conflict:
    """
    Two or more rule documents sharing one normalized title.

    Attributes:
        key: Case-folded, whitespace-collapsed title shared by the members.
        members: Source identifiers of every member, sorted.
        preferred: Source identifier of the member chosen as representative.
        divergent: True when the members differ in body or metadata.
    """

    key: str
    members: tuple[str, ...]
    preferred: str
    divergent: bool


def identity_key(title: str) -> str:
    """Fold a title into the identity key used to detect duplicates."""
    return " ".join(title.split()).casefold()


def _preference(rule: RuleDocument) -> tuple[int, str]:
    # Longest body first, then lexically smallest source
    return (-len(rule.body), rule.source)


def _fingerprint(rule: RuleDocument) -> tuple:
    return (
        rule.body.strip(),
        rule.impact,
        rule.impact_description,
        rule.tags,
        rule.section_id,
        tuple(sorted(rule.metadata.items())),
    )


def group_rules(rules: Iterable[RuleDocument]) -> dict[str, list[RuleDocument]]:
    """Group rules by identity key, keys in sorted order."""
    groups: dict[str, list[RuleDocument]] = {}
    for rule in rules:
        groups.setdefault(identity_key(rule.title), []).append(rule)
    return {key: groups[key] for key in sorted(groups)}


def resolve_groups(
    groups: Mapping[str, list[RuleDocument]],
) -> tuple[list[RuleDocument], list[Conflict]]:
    """
    Record a Conflict for every group holding more than one rule.

    No rule is dropped. Members that lose the tie-break are returned with
    ``superseded_by`` pointing at the preferred member's source.

    Args:
        groups: Rules grouped by identity key, see group_rules.

    Returns:
        Tuple of (rules sorted by source, conflicts sorted by key).
    """
    resolved: list[RuleDocument] = []
    conflicts: list[Conflict] = []
    for key in sorted(groups):
        members = groups[key]
        if len(members) == 1:
            resolved.extend(members)
            continue

        preferred = min(members, key=_preference)
        divergent = len({_fingerprint(member) for member in members}) > 1
        conflict = Conflict(
            key=key,
            members=tuple(sorted(member.source for member in members)),
            preferred=preferred.source,
            divergent=divergent,
        )
        conflicts.append(conflict)
        logger.info(
            "Conflict on %r: %s (preferred %s)",
            key,
            ", ".join(conflict.members),
            conflict.preferred,
        )

        for member in members:
            if member is preferred:
                resolved.append(member)
            else:
                resolved.append(replace(member, superseded_by=preferred.source))

    resolved.sort(key=lambda rule: rule.source)
    return resolved, conflicts


def resolve_conflicts(
    rules: Iterable[RuleDocument],
) -> tuple[list[RuleDocument], list[Conflict]]:
    """Group rules by normalized title and resolve every shared title."""
    return resolve_groups(group_rules(rules))
