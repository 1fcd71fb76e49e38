import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path

from rule_corpus.errors import (
    DuplicatePrefixError,
    EmptyRegistryError,
    InvalidImpactError,
    SectionDefinitionError,
)
from rule_corpus.impact import ImpactTier, normalize_impact


logger = logging.getLogger(__name__)

# "## 1. Eliminating Waterfalls (async, await)"
_HEADING_RE = re.compile(r"^##\s+(\d+)\.\s+(.+?)\s*\(([^()]*)\)\s*$")
# "Impact: CRITICAL" or "**Impact:** CRITICAL"
_FIELD_RE = re.compile(r"^\**\s*(Impact|Description)\s*:\s*\**\s*(.*?)\s*$", re.IGNORECASE)

# Characters that end a prefix inside a file-name stem
_STEM_BOUNDARIES = "-_."


@dataclass(frozen=True)
class Section:
    """A numbered group of rules sharing an impact tier."""

    id: int
    title: str
    impact: ImpactTier
    description: str
    prefixes: frozenset[str]


def parse_sections(
    content: str,
    impact_aliases: Mapping[str, str] | None = None,
) -> list[Section]:
    """
    Parse the section definitions document.

    Each section starts with a ``## <order>. <title> (<prefix, ...>)`` heading
    followed by ``Impact:`` and ``Description:`` lines, optionally in bold.
    Lines outside a section block are ignored.

    Args:
        content: Markdown text of the section definitions document.
        impact_aliases: Optional impact synonyms, see normalize_impact.

    Returns:
        Sections in declared heading order.

    Raises:
        SectionDefinitionError: If a block lacks an impact, declares an invalid
            impact or no prefixes, or reuses a section number.
    """
    blocks: list[dict] = []
    current: dict | None = None

    for line_no, line in enumerate(content.splitlines(), start=1):
        heading = _HEADING_RE.match(line.strip())
        if heading:
            current = {
                "line": line_no,
                "id": int(heading.group(1)),
                "title": heading.group(2).strip(),
                "prefixes": heading.group(3),
                "impact": None,
                "description": "",
            }
            blocks.append(current)
            continue
        if line.startswith("#"):
            # Any other heading closes the current block
            current = None
            continue
        if current is None:
            continue
        field = _FIELD_RE.match(line.strip())
        if field:
            current[field.group(1).lower()] = field.group(2)

    sections: list[Section] = []
    seen_ids: set[int] = set()
    for block in blocks:
        label = f"section {block['id']} (line {block['line']})"
        if block["id"] in seen_ids:
            msg = f"Duplicate section number in {label}"
            raise SectionDefinitionError(msg)
        seen_ids.add(block["id"])

        prefixes = frozenset(
            p.strip().lower() for p in block["prefixes"].split(",") if p.strip()
        )
        if not prefixes:
            msg = f"No prefixes declared for {label}"
            raise SectionDefinitionError(msg)

        if not block["impact"]:
            msg = f"Missing Impact line for {label}"
            raise SectionDefinitionError(msg)
        try:
            impact = normalize_impact(block["impact"], impact_aliases)
        except InvalidImpactError as exc:
            msg = f"{exc.message} in {label}"
            raise SectionDefinitionError(msg) from exc

        sections.append(
            Section(
                id=block["id"],
                title=block["title"],
                impact=impact,
                description=block["description"],
                prefixes=prefixes,
            )
        )
    return sections


class SectionRegistry:
    """
    Immutable set of sections with a longest-prefix resolution index.

    Built once per compilation run and shared read-only between workers.
    """

    def __init__(self, sections: Iterable[Section]) -> None:
        """
        Build the registry.

        Args:
            sections: Section definitions. They are ordered by declared id.

        Raises:
            EmptyRegistryError: If no sections are given.
            DuplicatePrefixError: If two sections claim the same prefix.
        """
        ordered = sorted(sections, key=lambda s: s.id)
        if not ordered:
            msg = "Section registry is empty: no sections declared"
            raise EmptyRegistryError(msg)

        index: dict[str, Section] = {}
        for section in ordered:
            for prefix in section.prefixes:
                key = prefix.lower()
                owner = index.get(key)
                if owner is not None and owner.id != section.id:
                    msg = (
                        f'Prefix "{key}" is declared by both section {owner.id} '
                        f"and section {section.id}"
                    )
                    raise DuplicatePrefixError(msg)
                index[key] = section

        self._sections: tuple[Section, ...] = tuple(ordered)
        self._by_id = {section.id: section for section in ordered}
        self._index = index
        logger.debug("Section registry built with %d sections", len(ordered))

    @classmethod
    def from_text(
        cls,
        content: str,
        impact_aliases: Mapping[str, str] | None = None,
    ) -> "SectionRegistry":
        """Build a registry from the text of a section definitions document."""
        return cls(parse_sections(content, impact_aliases))

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        impact_aliases: Mapping[str, str] | None = None,
    ) -> "SectionRegistry":
        """
        Build a registry from a section definitions file.

        Raises:
            SectionDefinitionError: If the file cannot be read.
        """
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Cannot read section definitions {path}: {exc}"
            raise SectionDefinitionError(msg) from exc
        return cls.from_text(content, impact_aliases)

    @property
    def sections(self) -> tuple[Section, ...]:
        return self._sections

    def __iter__(self) -> Iterator[Section]:
        return iter(self._sections)

    def __len__(self) -> int:
        return len(self._sections)

    def get(self, section_id: int) -> Section | None:
        return self._by_id.get(section_id)

    def by_prefix(self, prefix: str) -> Section | None:
        """Exact prefix lookup, used for explicit ``category`` overrides."""
        return self._index.get(prefix.strip().lower())

    def resolve(self, stem: str) -> Section | None:
        """
        Resolve a file-name stem to its section, longest prefix first.

        A prefix matches when the stem equals it or continues with one of
        ``-``, ``_`` or ``.`` right after it, so ``advanced-data-loading``
        matches ``advanced`` but ``asyncify`` does not match ``async``.

        Args:
            stem: File name without extension.

        Returns:
            The owning section, or None when no prefix matches.
        """
        key = stem.strip().lower()
        cuts = [len(key)]
        cuts.extend(
            i for i in range(len(key) - 1, 0, -1) if key[i] in _STEM_BOUNDARIES
        )
        for cut in cuts:
            section = self._index.get(key[:cut])
            if section is not None:
                return section
        return None
