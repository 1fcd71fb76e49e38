"""
Example demonstrating the rule-corpus compiler.

Compiles the sample corpus in examples/rules/ and prints the manifest,
the conflict between the two "Prefer Named Exports" documents and the
per-document errors.
"""

from pathlib import Path

from rich.console import Console

from rule_corpus import RuleCorpusContext
from rule_corpus.manifest import render_table


def main() -> None:
    """Compile the sample corpus."""
    rules_dir = Path(__file__).parent / "rules"
    console = Console()

    ctx = RuleCorpusContext(rules_dir, jobs=2)
    manifest = ctx.compile()

    render_table(manifest, console)

    print()
    print("Conflicts:")
    for conflict in manifest.conflicts:
        print(f"  {conflict.key}")
        for member in conflict.members:
            marker = "*" if member == conflict.preferred else " "
            print(f"    {marker} {member}")

    print()
    print("Errors:")
    for error in manifest.errors:
        print(f"  {error.source}: {error.kind} ({error.fragment!r})")


if __name__ == "__main__":
    main()
