import logging
import threading
import time
import warnings
from collections.abc import Generator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
from pathlib import Path

from rule_corpus.config import CompilerConfig
from rule_corpus.conflicts import group_rules, resolve_groups
from rule_corpus.errors import (
    CompilationCancelledError,
    DocumentReadError,
    DocumentTimeoutError,
    RuleDocumentError,
)
from rule_corpus.loader import RuleDocument, load_rule
from rule_corpus.manifest import DocumentError, Manifest, build_manifest
from rule_corpus.sections import SectionRegistry
from rule_corpus.source_lint import LintFinding, lint_rule


logger = logging.getLogger(__name__)

# Files starting with this are support documents (sections index, template)
_SUPPORT_FILE_PREFIX = "_"

# Seconds between checks for finished, expired or cancelled documents
_POLL_INTERVAL = 0.05


class CompileState(str, Enum):
    """Stages of a single compilation run."""

    INIT = "init"
    REGISTRY_LOADED = "registry_loaded"
    RULES_PARSED = "rules_parsed"
    GROUPED = "grouped"
    CONFLICTS_RESOLVED = "conflicts_resolved"
    MANIFEST_BUILT = "manifest_built"
    FAILED = "failed"


_STAGE_ORDER = [
    CompileState.INIT,
    CompileState.REGISTRY_LOADED,
    CompileState.RULES_PARSED,
    CompileState.GROUPED,
    CompileState.CONFLICTS_RESOLVED,
    CompileState.MANIFEST_BUILT,
]


class RuleCorpusContext:
    """Context class for compiling a directory of rule documents into a manifest."""

    def __init__(  # noqa: PLR0913
        self,
        rules_dir: str | Path,
        sections_file: str | Path | None = None,
        jobs: int | None = None,
        timeout: float | None = None,
        caching: bool | None = None,
        config: CompilerConfig | None = None,
    ) -> None:
        """
        Initialize the context with the rules directory.

        Args:
            rules_dir: Directory holding the rule documents.
            sections_file: Optional section definitions document. Relative paths
                are resolved against rules_dir (default: config.sections_file).
            jobs: Number of parsing workers (default: config.jobs).
            timeout: Per-document timeout in seconds (default: config.timeout).
            caching: Whether to reuse the last manifest while no input file
                changed (default: config.caching).
            config: Base settings; keyword arguments above override it.

        Raises:
            NotADirectoryError: If rules_dir is not a directory.
            ConfigError: If an override is invalid.
        """
        self.rules_dir = Path(rules_dir).resolve()
        if not self.rules_dir.is_dir():
            msg = f"rules_dir must be a directory, got: {self.rules_dir}"
            raise NotADirectoryError(msg)

        self.config = (config or CompilerConfig()).merged(
            sections_file=str(sections_file) if sections_file is not None else None,
            jobs=jobs,
            timeout=timeout,
            caching=caching,
        )
        self.sections_path = (self.rules_dir / self.config.sections_file).resolve()
        self.state = CompileState.INIT
        self._cancelled = threading.Event()
        # Last result plus the mtime of every file it was built from
        self._cache: tuple[Manifest, dict[Path, float]] | None = None

    def compile(self) -> Manifest:
        """
        Run one compilation and return the manifest.

        Per-document problems are recorded in the manifest's errors; they never
        abort the run.

        Returns:
            The manifest for the current contents of rules_dir.

        Raises:
            RegistryError: If the section definitions cannot be loaded.
            CompilationCancelledError: If cancel() was called during the run.
        """
        self.state = CompileState.INIT
        self._cancelled.clear()

        try:
            rule_files = list(self._iter_rule_files())
            mtimes = self._snapshot_mtimes([self.sections_path, *rule_files])

            if self.config.caching and self._cache is not None:
                cached_manifest, cached_mtimes = self._cache
                if self._cache_is_valid(cached_mtimes, mtimes):
                    logger.debug("Using cached manifest for %s", self.rules_dir)
                    self._advance_to_end()
                    return cached_manifest
                self._cache = None

            registry = SectionRegistry.from_file(self.sections_path, self.config.impact_aliases)
            self._advance(CompileState.REGISTRY_LOADED)

            if not rule_files:
                warnings.warn(
                    f"No rule documents found in {self.rules_dir}",
                    UserWarning,
                    stacklevel=2,
                )

            rules, errors = self._parse_all(rule_files, registry)
            self._check_cancelled()
            findings: list[LintFinding] = []
            for rule in rules:
                findings.extend(lint_rule(rule))
            self._advance(CompileState.RULES_PARSED)

            groups = group_rules(rules)
            self._advance(CompileState.GROUPED)
            resolved, conflicts = resolve_groups(groups)
            self._check_cancelled()
            self._advance(CompileState.CONFLICTS_RESOLVED)

            manifest = build_manifest(registry, resolved, conflicts, errors, findings)
            self._check_cancelled()
            self._advance(CompileState.MANIFEST_BUILT)
        except BaseException:
            self.state = CompileState.FAILED
            raise

        logger.info(
            "Compiled %d rules into %d sections (%d conflicts, %d errors)",
            manifest.rule_count,
            len(manifest.sections),
            len(manifest.conflicts),
            len(manifest.errors),
        )
        if self.config.caching:
            self._cache = (manifest, mtimes)
        return manifest

    def cancel(self) -> None:
        """Cancel the in-flight run. Safe to call from any thread."""
        self._cancelled.set()

    def invalidate_cache(self) -> None:
        """
        Clear the cached manifest.

        Note: The cache already invalidates itself when any input file changes,
        so manual invalidation is rarely needed.
        """
        self._cache = None

    def _advance(self, state: CompileState) -> None:
        current = _STAGE_ORDER.index(self.state)
        if _STAGE_ORDER.index(state) != current + 1:
            msg = f"Invalid transition {self.state.value} -> {state.value}"
            raise RuntimeError(msg)
        logger.debug("Run state: %s", state.value)
        self.state = state

    def _advance_to_end(self) -> None:
        for state in _STAGE_ORDER[1:]:
            self._advance(state)

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            msg = f"Compilation of {self.rules_dir} was cancelled"
            raise CompilationCancelledError(msg)

    def _iter_rule_files(self) -> Generator[Path, None, None]:
        """
        Iterate over rule documents under rules_dir in sorted order.

        Files whose name starts with an underscore are support documents and
        are skipped, as is the section definitions file itself.
        """
        for path in sorted(self.rules_dir.rglob("*.md")):
            if path.name.startswith(_SUPPORT_FILE_PREFIX) or not path.is_file():
                continue
            if path.resolve() == self.sections_path:
                continue
            yield path

    def _source_id(self, path: Path) -> str:
        return path.relative_to(self.rules_dir).as_posix()

    def _parse_all(
        self,
        rule_files: list[Path],
        registry: SectionRegistry,
    ) -> tuple[list[RuleDocument], list[DocumentError]]:
        """
        Parse every rule file on a pool of up to ``jobs`` workers.

        Each document gets ``timeout`` seconds from the moment a worker picks
        it up. The wait stops early when cancel() is called.

        Returns:
            Tuple of (loaded rules, per-document errors), both in file order.
        """
        outcomes: dict[Path, RuleDocument | DocumentError | None] = {}
        started: dict[Path, float] = {}
        pending: dict[Future, Path] = {}
        pools: list[ThreadPoolExecutor] = []

        def run(path: Path) -> RuleDocument | DocumentError | None:
            started[path] = time.monotonic()
            return self._load_document(path, registry)

        def submit(paths: list[Path]) -> None:
            pool = ThreadPoolExecutor(max_workers=min(self.config.jobs, len(paths)))
            pools.append(pool)
            for path in paths:
                pending[pool.submit(run, path)] = path

        try:
            if rule_files:
                submit(rule_files)
            while pending and not self._cancelled.is_set():
                done, _ = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    outcomes[pending.pop(future)] = future.result()

                now = time.monotonic()
                expired = [
                    future
                    for future, path in pending.items()
                    if path in started and now - started[path] >= self.config.timeout
                ]
                if not expired:
                    continue
                for future in expired:
                    path = pending.pop(future)
                    outcomes[path] = future.result() if future.done() else self._timed_out(path)

                # Timed-out workers keep their threads, so queued documents move to a fresh pool
                queued = [future for future in pending if future.cancel()]
                if queued:
                    submit([pending.pop(future) for future in queued])
        finally:
            # Do not wait for documents that timed out
            for pool in pools:
                pool.shutdown(wait=False, cancel_futures=True)

        rules: list[RuleDocument] = []
        errors: list[DocumentError] = []
        for path in rule_files:
            outcome = outcomes.get(path)
            if isinstance(outcome, RuleDocument):
                rules.append(outcome)
            elif isinstance(outcome, DocumentError):
                errors.append(outcome)
        return rules, errors

    def _timed_out(self, path: Path) -> DocumentError:
        source = self._source_id(path)
        exc = DocumentTimeoutError(
            f"Timed out after {self.config.timeout}s",
            fragment=path.name,
            source=source,
        )
        logger.warning("Timed out loading %s", source)
        return DocumentError.from_exception(source, exc)

    def _load_document(
        self,
        path: Path,
        registry: SectionRegistry,
    ) -> RuleDocument | DocumentError | None:
        """
        Read and load one rule document. Runs on a worker thread.

        Returns:
            The rule, the recorded error, or None when the run was cancelled.
        """
        if self._cancelled.is_set():
            return None

        source = self._source_id(path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            error = DocumentReadError(f"Cannot read file: {exc}", fragment=path.name, source=source)
            return DocumentError.from_exception(source, error)

        try:
            rule = load_rule(
                content,
                path.stem,
                registry,
                source=source,
                tag_delimiter=self.config.tag_delimiter,
                impact_aliases=self.config.impact_aliases,
            )
        except RuleDocumentError as exc:
            logger.debug("Failed to load %s: %s", source, exc.message)
            return DocumentError.from_exception(source, exc)

        logger.debug("Loaded %s into section %d", source, rule.section_id)
        return rule

    def _snapshot_mtimes(self, paths: list[Path]) -> dict[Path, float]:
        mtimes: dict[Path, float] = {}
        for path in paths:
            try:
                mtimes[path] = path.stat().st_mtime
            except OSError:
                # Missing files surface later as read or registry errors
                continue
        return mtimes

    def _cache_is_valid(
        self,
        cached_mtimes: dict[Path, float],
        current_mtimes: dict[Path, float],
    ) -> bool:
        """
        Check if the cached manifest is still valid.

        Args:
            cached_mtimes: File modification times recorded with the cache.
            current_mtimes: Modification times of the files found now.

        Returns:
            True if the same files exist with the same modification times.
        """
        return cached_mtimes == current_mtimes
