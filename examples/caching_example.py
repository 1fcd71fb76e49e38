"""Example demonstrating the mtime-based manifest cache of rule-corpus."""

from pathlib import Path
from time import time

from rule_corpus import RuleCorpusContext


def main() -> None:
    """Demonstrate caching functionality."""
    rules_dir = Path(__file__).parent / "rules"

    print("=" * 60)
    print("Caching Example - rule-corpus")
    print("=" * 60)

    ctx = RuleCorpusContext(rules_dir)

    # First compile - reads every document
    start = time()
    first = ctx.compile()
    time1 = time() - start
    print(f"First compile:  {first.rule_count} rules in {time1*1000:.2f}ms")

    # Second compile - no file changed, the same manifest object comes back
    start = time()
    second = ctx.compile()
    time2 = time() - start
    print(f"Second compile: {second.rule_count} rules in {time2*1000:.2f}ms (cached)")
    print(f"Same object: {second is first}")

    # Manual invalidation forces a rebuild
    ctx.invalidate_cache()
    third = ctx.compile()
    print(f"After invalidate_cache(): same object: {third is first}")
    print("\nNote: The cache also invalidates when any rule or section file changes!")


if __name__ == "__main__":
    main()
