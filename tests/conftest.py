from pathlib import Path

import pytest

from rule_corpus import SectionRegistry


SECTIONS_MD = """\
# Sections

This file defines all sections, their ordering, impact levels, and descriptions.

---

## 1. Eliminating Waterfalls (async)

**Impact:** CRITICAL
**Description:** Waterfalls are the top performance killer.

## 2. Component Patterns (component, component-args)

**Impact:** HIGH
**Description:** Structure components for clarity.

## 3. Advanced Patterns (advanced)

**Impact:** Medium-High
**Description:** Techniques for specific cases.

## 4. Imports (imports)

Impact: LOW
Description: Module layout conventions.
"""


def rule_text(title: str, impact: str = "HIGH", body: str = "", tags: str = "perf, ember") -> str:
    """Build a rule document that follows the authoring template."""
    body = body or (
        f"## {title}\n\nExplanation.\n\n**Incorrect:**\n\n```js\nbad()\n```\n\n"
        "**Correct:**\n\n```js\ngood()\n```\n"
    )
    return (
        f"---\ntitle: {title}\nimpact: {impact}\nimpactDescription: faster\n"
        f"tags: {tags}\n---\n\n{body}"
    )


@pytest.fixture
def registry() -> SectionRegistry:
    """Registry built from the sample section definitions."""
    return SectionRegistry.from_text(SECTIONS_MD)


@pytest.fixture
def rules_dir(tmp_path: Path) -> Path:
    """Create a rules directory holding only the section definitions."""
    directory = tmp_path / "rules"
    directory.mkdir()
    (directory / "_sections.md").write_text(SECTIONS_MD)
    return directory
