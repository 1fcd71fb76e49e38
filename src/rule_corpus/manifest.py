import json
from collections.abc import Iterable
from dataclasses import dataclass

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rule_corpus.conflicts import Conflict
from rule_corpus.errors import RuleDocumentError
from rule_corpus.impact import ImpactTier
from rule_corpus.loader import RuleDocument
from rule_corpus.sections import Section, SectionRegistry
from rule_corpus.source_lint import LintFinding


IMPACT_STYLE: dict[ImpactTier, str] = {
    ImpactTier.CRITICAL: "bold red",
    ImpactTier.HIGH: "red",
    ImpactTier.MEDIUM_HIGH: "yellow",
    ImpactTier.MEDIUM: "cyan",
    ImpactTier.LOW_MEDIUM: "green",
    ImpactTier.LOW: "dim",
}


@dataclass(frozen=True)
class DocumentError:
    """A per-document failure as shown in the report."""

    source: str
    kind: str
    message: str
    fragment: str = ""

    @classmethod
    def from_exception(cls, source: str, exc: RuleDocumentError) -> "DocumentError":
        return cls(
            source=exc.source or source,
            kind=type(exc).__name__,
            message=exc.message,
            fragment=exc.fragment,
        )


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    rule: RuleDocument


@dataclass(frozen=True)
class ManifestSection:
    section: Section
    entries: tuple[ManifestEntry, ...]


@dataclass(frozen=True)
class Manifest:
    """Terminal output of a compilation run."""

    sections: tuple[ManifestSection, ...]
    conflicts: tuple[Conflict, ...] = ()
    errors: tuple[DocumentError, ...] = ()
    warnings: tuple[LintFinding, ...] = ()

    @property
    def rule_count(self) -> int:
        return sum(len(s.entries) for s in self.sections)

    @property
    def clean(self) -> bool:
        """True when the run recorded neither errors nor conflicts."""
        return not self.errors and not self.conflicts

    def to_dict(self) -> dict:
        return {
            "sections": [
                {
                    "id": ms.section.id,
                    "title": ms.section.title,
                    "impact": ms.section.impact.value,
                    "description": ms.section.description,
                    "rules": [
                        {
                            "id": entry.id,
                            "title": entry.rule.title,
                            "impact": entry.rule.impact.value,
                            "impactDescription": entry.rule.impact_description,
                            "tags": sorted(entry.rule.tags),
                            "source": entry.rule.source,
                            "supersededBy": entry.rule.superseded_by,
                        }
                        for entry in ms.entries
                    ],
                }
                for ms in self.sections
            ],
            "conflicts": [
                {
                    "key": c.key,
                    "members": list(c.members),
                    "preferred": c.preferred,
                    "divergent": c.divergent,
                }
                for c in self.conflicts
            ],
            "errors": [
                {
                    "source": e.source,
                    "kind": e.kind,
                    "message": e.message,
                    "fragment": e.fragment,
                }
                for e in self.errors
            ],
            "warnings": [{"source": w.source, "message": w.message} for w in self.warnings],
        }

    def to_json(self) -> str:
        """Serialize to JSON. Identical manifests give byte-identical output."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n"


def rule_sort_key(rule: RuleDocument) -> tuple[int, str, str, str]:
    """Severity first, then title, with the source as a final tie-break."""
    return (rule.impact.rank, rule.title.casefold(), rule.title, rule.source)


def build_manifest(
    registry: SectionRegistry,
    rules: Iterable[RuleDocument],
    conflicts: Iterable[Conflict] = (),
    errors: Iterable[DocumentError] = (),
    warnings: Iterable[LintFinding] = (),
) -> Manifest:
    """
    Assemble the manifest.

    Args:
        registry: Registry of the run; fixes section order.
        rules: Resolved, conflict-annotated rules.
        conflicts: Conflicts found by the resolver.
        errors: Per-document failures.
        warnings: Advisory lint findings.

    Returns:
        The manifest. Every registry section is present, even when empty.

    Raises:
        ValueError: If a rule points at a section missing from the registry.
    """
    grouped: dict[int, list[RuleDocument]] = {section.id: [] for section in registry}
    for rule in rules:
        if rule.section_id not in grouped:
            msg = f"Rule {rule.source} references unknown section {rule.section_id}"
            raise ValueError(msg)
        grouped[rule.section_id].append(rule)

    sections = []
    for section in registry:
        ordered = sorted(grouped[section.id], key=rule_sort_key)
        entries = tuple(
            ManifestEntry(id=f"{section.id}.{position}", rule=rule)
            for position, rule in enumerate(ordered, start=1)
        )
        sections.append(ManifestSection(section=section, entries=entries))

    return Manifest(
        sections=tuple(sections),
        conflicts=tuple(sorted(conflicts, key=lambda c: c.key)),
        errors=tuple(sorted(errors, key=lambda e: (e.source, e.kind, e.message))),
        warnings=tuple(sorted(warnings, key=lambda w: (w.source, w.message))),
    )


def render_table(manifest: Manifest, console: Console) -> None:
    """Print the manifest as rich tables: one per section, then findings."""
    for ms in manifest.sections:
        section = ms.section
        table = Table(
            title=escape(f"{section.id}. {section.title}"),
            caption=escape(section.description) or None,
            box=box.SIMPLE_HEAVY,
            show_lines=False,
        )
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Impact", no_wrap=True)
        table.add_column("Title")
        table.add_column("Tags", style="magenta")
        table.add_column("Source", style="dim")

        for entry in ms.entries:
            rule = entry.rule
            title = escape(rule.title)
            if rule.superseded_by:
                title += f" [dim](superseded by {escape(rule.superseded_by)})[/dim]"
            style = IMPACT_STYLE[rule.impact]
            table.add_row(
                entry.id,
                f"[{style}]{rule.impact.value}[/{style}]",
                title,
                escape(", ".join(sorted(rule.tags))),
                escape(rule.source),
            )
        console.print(table)

    if manifest.conflicts:
        table = Table(title="Conflicts", box=box.SIMPLE_HEAVY)
        table.add_column("Title key")
        table.add_column("Members")
        table.add_column("Preferred", style="green")
        table.add_column("Divergent", no_wrap=True)
        for c in manifest.conflicts:
            table.add_row(
                escape(c.key),
                escape("\n".join(c.members)),
                escape(c.preferred),
                "yes" if c.divergent else "no",
            )
        console.print(table)

    if manifest.errors:
        table = Table(title="Errors", box=box.SIMPLE_HEAVY)
        table.add_column("Source")
        table.add_column("Kind", style="red", no_wrap=True)
        table.add_column("Message")
        table.add_column("Input", style="yellow")
        for e in manifest.errors:
            table.add_row(escape(e.source), e.kind, escape(e.message), escape(e.fragment))
        console.print(table)

    if manifest.warnings:
        table = Table(title="Warnings", box=box.SIMPLE_HEAVY)
        table.add_column("Source")
        table.add_column("Message", style="yellow")
        for w in manifest.warnings:
            table.add_row(escape(w.source), escape(w.message))
        console.print(table)

    console.print(
        f"[bold]{manifest.rule_count}[/bold] rules in {len(manifest.sections)} sections, "
        f"{len(manifest.conflicts)} conflicts, {len(manifest.errors)} errors"
    )
