from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from rule_corpus.errors import ConfigError


# Looked up inside the rules directory when no explicit config is given
CONFIG_FILENAME = "rule-corpus.yaml"


@dataclass(frozen=True)
class CompilerConfig:
    """
    Settings of a compilation run.

    Attributes:
        sections_file: Section definitions document, relative to the rules dir.
        jobs: Parallel parsing workers; 1 parses inline.
        timeout: Per-document timeout in seconds.
        tag_delimiter: Separator for list-valued metadata such as tags.
        impact_aliases: Extra impact synonyms mapped to canonical tiers.
        caching: Reuse the previous result while no rule file changed.
    """

    sections_file: str = "_sections.md"
    jobs: int = 4
    timeout: float = 10.0
    tag_delimiter: str = ","
    impact_aliases: dict[str, str] = field(default_factory=dict)
    caching: bool = True

    def merged(self, **overrides: Any) -> "CompilerConfig":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return _validated(replace(self, **values))


def _validated(config: CompilerConfig) -> CompilerConfig:
    if not isinstance(config.jobs, int) or config.jobs < 1:
        msg = f"jobs must be a positive integer, got: {config.jobs!r}"
        raise ConfigError(msg)
    if not isinstance(config.timeout, (int, float)) or config.timeout <= 0:
        msg = f"timeout must be a positive number, got: {config.timeout!r}"
        raise ConfigError(msg)
    if not isinstance(config.tag_delimiter, str) or not config.tag_delimiter:
        msg = "tag_delimiter must be a non-empty string"
        raise ConfigError(msg)
    if not isinstance(config.sections_file, str) or not config.sections_file:
        msg = "sections_file must be a non-empty string"
        raise ConfigError(msg)
    if not isinstance(config.caching, bool):
        msg = f"caching must be true or false, got: {config.caching!r}"
        raise ConfigError(msg)
    aliases = config.impact_aliases
    if not isinstance(aliases, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in aliases.items()
    ):
        msg = "impact_aliases must map strings to strings"
        raise ConfigError(msg)
    return config


def load_config(path: str | Path) -> CompilerConfig:
    """
    Load a YAML config file.

    Args:
        path: Path to the YAML file.

    Returns:
        Defaults overridden by the file's keys.

    Raises:
        ConfigError: If the file is unreadable, not a mapping, or has unknown
            keys or bad values.
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot load config {path}: {exc}"
        raise ConfigError(msg) from exc

    if data is None:
        return CompilerConfig()
    if not isinstance(data, dict):
        msg = f"Config {path} must be a mapping"
        raise ConfigError(msg)

    known = {f.name for f in fields(CompilerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        msg = f"Unknown config keys in {path}: {', '.join(map(str, unknown))}"
        raise ConfigError(msg)
    return _validated(CompilerConfig(**data))


def discover_config(rules_dir: str | Path, explicit: str | Path | None = None) -> CompilerConfig:
    """Load the explicit config, else rule-corpus.yaml from the rules dir, else defaults."""
    if explicit is not None:
        return load_config(explicit)
    candidate = Path(rules_dir) / CONFIG_FILENAME
    if candidate.is_file():
        return load_config(candidate)
    return CompilerConfig()
