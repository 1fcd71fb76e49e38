"""Compile best-practice rule documents into a deterministic manifest."""

__version__ = "0.1.0"

from rule_corpus.conflicts import Conflict, resolve_conflicts
from rule_corpus.ctx import CompileState, RuleCorpusContext
from rule_corpus.errors import (
    CompilationCancelledError,
    ConfigError,
    DocumentReadError,
    DocumentTimeoutError,
    DuplicatePrefixError,
    EmptyRegistryError,
    InvalidImpactError,
    MissingTitleError,
    ParseError,
    RegistryError,
    RuleCorpusError,
    RuleDocumentError,
    SectionDefinitionError,
    UnknownSectionError,
)
from rule_corpus.frontmatter import parse_frontmatter
from rule_corpus.impact import ImpactTier, normalize_impact
from rule_corpus.loader import RuleDocument, load_rule
from rule_corpus.manifest import DocumentError, Manifest, build_manifest
from rule_corpus.sections import Section, SectionRegistry


__all__ = [
    "CompilationCancelledError",
    "CompileState",
    "ConfigError",
    "Conflict",
    "DocumentError",
    "DocumentReadError",
    "DocumentTimeoutError",
    "DuplicatePrefixError",
    "EmptyRegistryError",
    "ImpactTier",
    "InvalidImpactError",
    "Manifest",
    "MissingTitleError",
    "ParseError",
    "RegistryError",
    "RuleCorpusContext",
    "RuleCorpusError",
    "RuleDocument",
    "RuleDocumentError",
    "Section",
    "SectionDefinitionError",
    "SectionRegistry",
    "UnknownSectionError",
    "build_manifest",
    "load_rule",
    "normalize_impact",
    "parse_frontmatter",
    "resolve_conflicts",
]
