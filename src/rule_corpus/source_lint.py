"""Advisory checks that a rule document follows the authoring template."""

import re
from dataclasses import dataclass

from rule_corpus.loader import RuleDocument


REQUIRED_FIELDS = ("title", "impact", "impactDescription", "tags")

_H2_RE = re.compile(r"^##\s+(.+?)\s*$", re.MULTILINE)
# Allows variants like "**Incorrect (why):**" or "**❌ Incorrect:**"
_INCORRECT_RE = re.compile(r"\*\*[^*\n]*\bincorrect\b[^*\n]*:\*?\*?", re.IGNORECASE)
_CORRECT_RE = re.compile(r"\*\*[^*\n]*\bcorrect\b[^*\n]*:\*?\*?", re.IGNORECASE)


@dataclass(frozen=True)
class LintFinding:
    source: str
    message: str


def lint_rule(rule: RuleDocument) -> list[LintFinding]:
    """
    Check a loaded rule against the authoring template.

    Findings never fail a run. They point authors at documents that compile
    but drift from the expected layout.

    Args:
        rule: A successfully loaded rule.

    Returns:
        Findings in a stable order.
    """
    messages: list[str] = []

    if not rule.metadata:
        messages.append("Missing front matter block (must start with ---)")
    for name, value in rule.metadata.items():
        if not value.strip():
            messages.append(f'Front matter field "{name}" value cannot be empty')
    for name in REQUIRED_FIELDS:
        if name not in rule.metadata:
            messages.append(f'Missing required front matter field "{name}"')

    first_line = next((line for line in rule.body.splitlines() if line.strip()), "")
    if not first_line.startswith("## "):
        messages.append("Body must start with a level-2 heading (## Rule Title)")

    heading = _H2_RE.search(rule.body)
    declared_title = rule.metadata.get("title", "").strip()
    if heading and declared_title and heading.group(1) != declared_title:
        messages.append(
            f'Front matter title "{declared_title}" does not match heading "{heading.group(1)}"'
        )

    if not _INCORRECT_RE.search(rule.body):
        messages.append('Missing "**Incorrect ...:**" example')
    if not _CORRECT_RE.search(rule.body):
        messages.append('Missing "**Correct ...:**" example')

    return [LintFinding(source=rule.source, message=message) for message in messages]
