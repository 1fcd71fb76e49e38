"""Turn a raw rule document into a resolved RuleDocument."""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from rule_corpus.errors import MissingTitleError, RuleDocumentError, UnknownSectionError
from rule_corpus.frontmatter import parse_frontmatter, split_list
from rule_corpus.impact import ImpactTier, normalize_impact
from rule_corpus.sections import Section, SectionRegistry


_HEADING_RE = re.compile(r"^(#{1,2})\s+(.+?)\s*#*\s*$")
# "**Impact: HIGH (avoids N+1 requests)**"
_BODY_IMPACT_RE = re.compile(r"\*\*Impact:\s*([\w\s-]+?)\s*(?:\(([^)]+)\))?\s*\*\*", re.IGNORECASE)


@dataclass(frozen=True)
class RuleDocument:
    """A parsed rule document resolved to its section."""

    source: str
    stem: str
    title: str
    raw_impact: str
    impact: ImpactTier
    impact_description: str
    tags: frozenset[str]
    body: str
    section_id: int
    metadata: Mapping[str, str] = field(default_factory=dict, compare=False)
    superseded_by: str | None = None


def infer_title(body: str) -> str | None:
    """
    Return the text of the first ``#`` or ``##`` heading outside code fences.

    Args:
        body: Markdown body of a rule document.

    Returns:
        The heading text, or None when the body has no such heading.
    """
    in_fence = False
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(stripped)
        if match and match.group(2):
            return match.group(2)
    return None


def _find_body_impact(body: str) -> tuple[str, str] | None:
    """Find an inline ``**Impact: TIER (description)**`` line in the body."""
    in_fence = False
    for line in body.splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _BODY_IMPACT_RE.search(line)
        if match:
            return match.group(1).strip(), (match.group(2) or "").strip()
    return None


def _resolve_section(
    metadata: Mapping[str, str],
    stem: str,
    registry: SectionRegistry,
) -> Section:
    """
    Pick the owning section.

    Precedence: numeric ``section`` metadata, then the ``category`` prefix
    override, then the file-name stem.
    """
    declared = metadata.get("section", "").strip()
    if declared:
        section = registry.get(int(declared)) if declared.isascii() and declared.isdigit() else None
        if section is None:
            msg = f'Unknown section number "{declared}"'
            raise UnknownSectionError(msg, fragment=declared)
        return section

    category = metadata.get("category", "").strip()
    if category:
        section = registry.by_prefix(category)
        if section is None:
            msg = f'Category "{category}" does not match any section prefix'
            raise UnknownSectionError(msg, fragment=category)
        return section

    section = registry.resolve(stem)
    if section is None:
        msg = f'File name "{stem}" does not start with any section prefix'
        raise UnknownSectionError(msg, fragment=stem)
    return section


def load_rule(  # noqa: PLR0913
    content: str,
    stem: str,
    registry: SectionRegistry,
    *,
    source: str | None = None,
    tag_delimiter: str = ",",
    impact_aliases: Mapping[str, str] | None = None,
) -> RuleDocument:
    """
    Parse and resolve one rule document.

    Args:
        content: Raw markdown text.
        stem: File name without extension; drives prefix resolution.
        registry: Section registry for this run.
        source: Source identifier, defaults to the stem.
        tag_delimiter: Delimiter for list-valued metadata.
        impact_aliases: Optional impact synonyms.

    Returns:
        The resolved rule document.

    Raises:
        ParseError: If the front matter is malformed.
        MissingTitleError: If no title is declared or inferable.
        UnknownSectionError: If no section matches.
        InvalidImpactError: If the impact does not normalize to a tier.
    """
    source = source or stem
    try:
        return _build_rule(content, stem, registry, source, tag_delimiter, impact_aliases)
    except RuleDocumentError as exc:
        if exc.source is None:
            exc.source = source
        raise


def _build_rule(  # noqa: PLR0913
    content: str,
    stem: str,
    registry: SectionRegistry,
    source: str,
    tag_delimiter: str,
    impact_aliases: Mapping[str, str] | None,
) -> RuleDocument:
    metadata, body = parse_frontmatter(content, tag_delimiter)

    title = metadata.get("title", "").strip() or infer_title(body)
    if not title:
        msg = "No title in front matter and no heading in body"
        raise MissingTitleError(msg, fragment=stem)

    section = _resolve_section(metadata, stem, registry)

    body_impact = _find_body_impact(body)
    raw_impact = metadata.get("impact", "").strip()
    if not raw_impact and body_impact:
        raw_impact = body_impact[0]
    # A rule that declares no impact inherits its section's tier
    impact = normalize_impact(raw_impact, impact_aliases) if raw_impact else section.impact

    impact_description = metadata.get("impactDescription", "").strip()
    if not impact_description and body_impact:
        impact_description = body_impact[1]

    return RuleDocument(
        source=source,
        stem=stem,
        title=title,
        raw_impact=raw_impact,
        impact=impact,
        impact_description=impact_description,
        tags=frozenset(split_list(metadata.get("tags", ""), tag_delimiter)),
        body=body,
        section_id=section.id,
        metadata=dict(metadata),
    )
