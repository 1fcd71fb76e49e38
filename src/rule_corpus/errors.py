"""Exception hierarchy for rule corpus compilation."""


class RuleCorpusError(Exception):
    """Base class for every error raised by rule_corpus."""


class RuleDocumentError(RuleCorpusError):
    """
    A problem confined to a single rule document.

    These are recoverable: a compilation run records them in its report and
    keeps going with the remaining documents.

    Attributes:
        fragment: The offending piece of input (prefix, impact string, line).
        source: Source identifier of the document, when known.
    """

    def __init__(self, message: str, fragment: str = "", source: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.fragment = fragment
        self.source = source


class ParseError(RuleDocumentError):
    """Front matter is present but malformed."""


class MissingTitleError(RuleDocumentError):
    """No title in the metadata and no heading to infer one from."""


class UnknownSectionError(RuleDocumentError):
    """No registered section matches the document."""


class InvalidImpactError(RuleDocumentError):
    """The declared impact does not normalize to a known tier."""


class DocumentReadError(RuleDocumentError):
    """The document could not be read from disk."""


class DocumentTimeoutError(RuleDocumentError):
    """Reading and parsing the document exceeded the per-document timeout."""


class RegistryError(RuleCorpusError):
    """The section registry could not be built. Always fatal."""


class DuplicatePrefixError(RegistryError):
    """Two sections claim the same file-name prefix."""


class EmptyRegistryError(RegistryError):
    """The section definitions declare no sections."""


class SectionDefinitionError(RegistryError):
    """A section definition block is malformed."""


class ConfigError(RuleCorpusError):
    """Compiler configuration is invalid."""


class CompilationCancelledError(RuleCorpusError):
    """The run was cancelled before a manifest was built."""
