import os
import threading
import time
from pathlib import Path

import pytest

import rule_corpus.ctx as ctx_module
from rule_corpus import (
    CompilationCancelledError,
    CompileState,
    DuplicatePrefixError,
    EmptyRegistryError,
    RuleCorpusContext,
    SectionDefinitionError,
)
from rule_corpus.config import CompilerConfig

from conftest import rule_text


NAMED_EXPORTS = "Prefer Named Exports Outside Resolver Modules"


def _touch_later(path: Path) -> None:
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 2))


def test_basic_compile(rules_dir: Path) -> None:
    """Test compiling a small corpus."""
    (rules_dir / "async-parallel.md").write_text(rule_text("Parallel Fetches"))
    (rules_dir / "advanced-data-loading-with-ember-concurrency.md").write_text(
        rule_text("Use ember-concurrency", impact="MEDIUM-HIGH")
    )

    ctx = RuleCorpusContext(rules_dir)
    manifest = ctx.compile()

    assert ctx.state is CompileState.MANIFEST_BUILT
    assert manifest.clean
    assert [e.rule.source for e in manifest.sections[0].entries] == ["async-parallel.md"]
    assert [e.rule.source for e in manifest.sections[2].entries] == [
        "advanced-data-loading-with-ember-concurrency.md"
    ]


def test_support_files_skipped(rules_dir: Path) -> None:
    """Test that underscore files are not treated as rules."""
    (rules_dir / "_template.md").write_text("## Template\n")
    (rules_dir / "async-x.md").write_text(rule_text("X"))

    manifest = RuleCorpusContext(rules_dir).compile()

    assert manifest.rule_count == 1
    assert manifest.errors == ()


def test_nested_directories(rules_dir: Path) -> None:
    """Test that rules are discovered recursively with POSIX source ids."""
    nested = rules_dir / "extra"
    nested.mkdir()
    (nested / "imports-named.md").write_text(rule_text("Named"))

    manifest = RuleCorpusContext(rules_dir).compile()

    assert manifest.sections[3].entries[0].rule.source == "extra/imports-named.md"


def test_unknown_prefix_reported(rules_dir: Path) -> None:
    """Test that an unmatched document is reported and left out of sections."""
    (rules_dir / "async-x.md").write_text(rule_text("X"))
    (rules_dir / "mystery-thing.md").write_text(rule_text("Mystery"))

    manifest = RuleCorpusContext(rules_dir).compile()

    assert manifest.rule_count == 1
    (error,) = manifest.errors
    assert error.source == "mystery-thing.md"
    assert error.kind == "UnknownSectionError"
    assert error.fragment == "mystery-thing"


def test_invalid_impact_reported(rules_dir: Path) -> None:
    """Test that an invalid impact is reported with the offending string."""
    (rules_dir / "async-x.md").write_text(rule_text("X", impact="Super Critical"))

    manifest = RuleCorpusContext(rules_dir).compile()

    (error,) = manifest.errors
    assert error.kind == "InvalidImpactError"
    assert error.fragment == "Super Critical"


def test_every_error_kind_collected(rules_dir: Path) -> None:
    """Test that per-document failures do not abort the run."""
    (rules_dir / "async-ok.md").write_text(rule_text("Ok"))
    (rules_dir / "async-parse.md").write_text("---\ntitle: broken\n")
    (rules_dir / "async-notitle.md").write_text("---\nimpact: LOW\n---\nprose only\n")
    (rules_dir / "nowhere-x.md").write_text(rule_text("Nowhere"))
    (rules_dir / "async-impact.md").write_text(rule_text("Bad", impact="EXTREME"))
    (rules_dir / "async-binary.md").write_bytes(b"\xff\xfe\xfa")

    manifest = RuleCorpusContext(rules_dir, jobs=3).compile()

    kinds = {error.source: error.kind for error in manifest.errors}
    assert kinds == {
        "async-binary.md": "DocumentReadError",
        "async-impact.md": "InvalidImpactError",
        "async-notitle.md": "MissingTitleError",
        "async-parse.md": "ParseError",
        "nowhere-x.md": "UnknownSectionError",
    }
    assert manifest.rule_count == 1


def test_duplicate_titles_surface_as_conflict(rules_dir: Path) -> None:
    """Test that two documents sharing a title are kept and reported."""
    (rules_dir / "imports-named-exports.md").write_text(
        rule_text(NAMED_EXPORTS, body=f"## {NAMED_EXPORTS}\n\nShort guidance.\n")
    )
    (rules_dir / "imports-prefer-named-exports.md").write_text(
        rule_text(
            NAMED_EXPORTS,
            body=f"## {NAMED_EXPORTS}\n\nLonger guidance that differs in resolver mode.\n",
        )
    )

    manifest = RuleCorpusContext(rules_dir).compile()

    (conflict,) = manifest.conflicts
    assert conflict.members == ("imports-named-exports.md", "imports-prefer-named-exports.md")
    assert conflict.preferred == "imports-prefer-named-exports.md"
    assert manifest.rule_count == 2
    assert not manifest.clean


def test_deterministic_output(rules_dir: Path) -> None:
    """Test that two runs produce byte-identical JSON, serial or parallel."""
    for i in range(12):
        prefix = ["async", "component", "advanced", "imports"][i % 4]
        (rules_dir / f"{prefix}-rule-{i}.md").write_text(rule_text(f"Rule {i % 5}"))

    serial = RuleCorpusContext(rules_dir, jobs=1, caching=False).compile().to_json()
    parallel = RuleCorpusContext(rules_dir, jobs=8, caching=False).compile().to_json()

    assert serial == parallel


def test_missing_sections_file_is_fatal(tmp_path: Path) -> None:
    """Test that a run without section definitions fails."""
    (tmp_path / "async-x.md").write_text(rule_text("X"))
    ctx = RuleCorpusContext(tmp_path)

    with pytest.raises(SectionDefinitionError):
        ctx.compile()
    assert ctx.state is CompileState.FAILED


def test_empty_registry_is_fatal(rules_dir: Path) -> None:
    """Test that an empty definitions document fails the run."""
    (rules_dir / "_sections.md").write_text("# Sections\n")

    with pytest.raises(EmptyRegistryError):
        RuleCorpusContext(rules_dir).compile()


def test_duplicate_prefix_is_fatal(rules_dir: Path) -> None:
    """Test that overlapping section prefixes fail the run."""
    (rules_dir / "_sections.md").write_text(
        "## 1. A (shared)\n**Impact:** LOW\n\n## 2. B (shared)\n**Impact:** LOW\n"
    )

    with pytest.raises(DuplicatePrefixError):
        RuleCorpusContext(rules_dir).compile()


def test_custom_sections_file(rules_dir: Path) -> None:
    """Test pointing at a section definitions file elsewhere."""
    other = rules_dir.parent / "sections.md"
    other.write_text("## 1. Misc (misc)\n**Impact:** LOW\n")
    (rules_dir / "misc-x.md").write_text(rule_text("X"))

    manifest = RuleCorpusContext(rules_dir, sections_file=other).compile()

    assert [s.section.title for s in manifest.sections] == ["Misc"]
    assert manifest.rule_count == 1


def test_sections_file_inside_rules_dir_not_a_rule(rules_dir: Path) -> None:
    """Test that a non-underscore sections file is not parsed as a rule."""
    (rules_dir / "sections.md").write_text("## 1. Misc (misc)\n**Impact:** LOW\n")

    manifest = RuleCorpusContext(rules_dir, sections_file="sections.md").compile()

    assert manifest.errors == ()


def test_no_rules_warns(rules_dir: Path) -> None:
    """Test that an empty corpus emits a warning."""
    ctx = RuleCorpusContext(rules_dir)

    with pytest.warns(UserWarning, match="No rule documents found"):
        manifest = ctx.compile()

    assert manifest.rule_count == 0


def test_rules_dir_not_directory(tmp_path: Path) -> None:
    """Test that rules_dir must be a directory."""
    path = tmp_path / "file.md"
    path.write_text("x")

    with pytest.raises(NotADirectoryError, match="rules_dir must be a directory"):
        RuleCorpusContext(path)


def test_config_applied(rules_dir: Path) -> None:
    """Test that config settings reach the loader."""
    (rules_dir / "async-x.md").write_text("---\ntitle: X\nimpact: blocker\ntags: a|b\n---\n")
    config = CompilerConfig(tag_delimiter="|", impact_aliases={"blocker": "critical"})

    manifest = RuleCorpusContext(rules_dir, config=config).compile()

    rule = manifest.sections[0].entries[0].rule
    assert rule.impact.value == "CRITICAL"
    assert rule.tags == frozenset({"a", "b"})


def test_lint_findings_reported(rules_dir: Path) -> None:
    """Test that template drift shows up as warnings without failing the run."""
    (rules_dir / "async-x.md").write_text("---\ntitle: X\n---\n## X\n")

    manifest = RuleCorpusContext(rules_dir).compile()

    assert manifest.clean
    messages = [w.message for w in manifest.warnings]
    assert 'Missing required front matter field "impact"' in messages


def test_caching_enabled_by_default(rules_dir: Path) -> None:
    """Test that an unchanged corpus returns the cached manifest."""
    rule = rules_dir / "async-x.md"
    rule.write_text(rule_text("Original"))
    ctx = RuleCorpusContext(rules_dir)

    first = ctx.compile()
    second = ctx.compile()

    assert second is first
    assert ctx.state is CompileState.MANIFEST_BUILT

    rule.write_text(rule_text("Modified"))
    _touch_later(rule)

    third = ctx.compile()
    assert third is not first
    assert third.sections[0].entries[0].rule.title == "Modified"


def test_cache_invalidates_on_new_file(rules_dir: Path) -> None:
    """Test that adding a rule file invalidates the cache."""
    (rules_dir / "async-x.md").write_text(rule_text("X"))
    ctx = RuleCorpusContext(rules_dir)
    ctx.compile()

    (rules_dir / "async-y.md").write_text(rule_text("Y"))

    assert ctx.compile().rule_count == 2


def test_cache_invalidates_on_sections_change(rules_dir: Path) -> None:
    """Test that editing the section definitions invalidates the cache."""
    (rules_dir / "async-x.md").write_text(rule_text("X"))
    ctx = RuleCorpusContext(rules_dir)
    ctx.compile()

    sections = rules_dir / "_sections.md"
    sections.write_text("## 1. Only Async (async)\n**Impact:** HIGH\n")
    _touch_later(sections)

    assert [s.section.title for s in ctx.compile().sections] == ["Only Async"]


def test_caching_can_be_disabled(rules_dir: Path) -> None:
    """Test that disabling the cache rebuilds every time."""
    (rules_dir / "async-x.md").write_text(rule_text("X"))
    ctx = RuleCorpusContext(rules_dir, caching=False)

    assert ctx.compile() is not ctx.compile()


def test_invalidate_cache(rules_dir: Path) -> None:
    """Test manual cache invalidation."""
    (rules_dir / "async-x.md").write_text(rule_text("X"))
    ctx = RuleCorpusContext(rules_dir)
    first = ctx.compile()

    ctx.invalidate_cache()

    assert ctx.compile() is not first


def test_cancel_discards_run(rules_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that a cancelled run raises and produces no manifest."""
    for i in range(6):
        (rules_dir / f"async-{i}.md").write_text(rule_text(f"R{i}"))
    ctx = RuleCorpusContext(rules_dir, jobs=2)
    original = ctx_module.load_rule

    def cancelling_load(*args, **kwargs):
        ctx.cancel()
        return original(*args, **kwargs)

    monkeypatch.setattr(ctx_module, "load_rule", cancelling_load)

    with pytest.raises(CompilationCancelledError):
        ctx.compile()
    assert ctx.state is CompileState.FAILED


def test_timeout_isolated_to_document(rules_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that a slow document times out without failing the others."""
    (rules_dir / "async-fast.md").write_text(rule_text("Fast"))
    (rules_dir / "async-slow.md").write_text(rule_text("Slow"))
    release = threading.Event()
    original = ctx_module.load_rule

    def slow_load(content, stem, *args, **kwargs):
        if stem == "async-slow":
            release.wait(5)
        return original(content, stem, *args, **kwargs)

    monkeypatch.setattr(ctx_module, "load_rule", slow_load)

    start = time.monotonic()
    try:
        manifest = RuleCorpusContext(rules_dir, jobs=2, timeout=0.2).compile()
    finally:
        release.set()

    assert time.monotonic() - start < 4
    (error,) = manifest.errors
    assert error.source == "async-slow.md"
    assert error.kind == "DocumentTimeoutError"
    assert manifest.rule_count == 1


def test_non_ascii_section_number_recorded(rules_dir: Path) -> None:
    """Test that a superscript section number is a per-document error, not a crash."""
    (rules_dir / "async-ok.md").write_text(rule_text("Ok"))
    (rules_dir / "async-odd.md").write_text("---\ntitle: Odd\nsection: ²\n---\n")

    manifest = RuleCorpusContext(rules_dir).compile()

    (error,) = manifest.errors
    assert error.source == "async-odd.md"
    assert error.kind == "UnknownSectionError"
    assert manifest.rule_count == 1


@pytest.mark.parametrize("extra", [False, True])
def test_timeout_applies_with_single_worker(
    rules_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
    extra: bool,
) -> None:
    """Test that jobs=1 still bounds each document, even ahead of a fast one."""
    (rules_dir / "async-a-slow.md").write_text(rule_text("Slow"))
    if extra:
        (rules_dir / "async-b-fast.md").write_text(rule_text("Fast"))
    release = threading.Event()
    original = ctx_module.load_rule

    def slow_load(content, stem, *args, **kwargs):
        if stem == "async-a-slow":
            release.wait(5)
        return original(content, stem, *args, **kwargs)

    monkeypatch.setattr(ctx_module, "load_rule", slow_load)

    start = time.monotonic()
    try:
        manifest = RuleCorpusContext(rules_dir, jobs=1, timeout=0.2).compile()
    finally:
        release.set()

    assert time.monotonic() - start < 4
    (error,) = manifest.errors
    assert error.source == "async-a-slow.md"
    assert error.kind == "DocumentTimeoutError"
    assert manifest.rule_count == (1 if extra else 0)


def test_cancel_interrupts_slow_document(
    rules_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test that cancel() returns promptly while a document is still loading."""
    (rules_dir / "async-slow.md").write_text(rule_text("Slow"))
    release = threading.Event()
    original = ctx_module.load_rule

    def slow_load(*args, **kwargs):
        release.wait(10)
        return original(*args, **kwargs)

    monkeypatch.setattr(ctx_module, "load_rule", slow_load)
    ctx = RuleCorpusContext(rules_dir, jobs=2, timeout=10)
    timer = threading.Timer(0.1, ctx.cancel)

    start = time.monotonic()
    timer.start()
    try:
        with pytest.raises(CompilationCancelledError):
            ctx.compile()
    finally:
        release.set()
        timer.cancel()

    assert time.monotonic() - start < 3
    assert ctx.state is CompileState.FAILED
