import yaml

from rule_corpus.errors import ParseError


# Metadata fields whose value is a delimiter-separated list
LIST_FIELDS = frozenset({"tags"})

_DELIMITER = "---"


def parse_frontmatter(content: str, tag_delimiter: str = ",") -> tuple[dict[str, str], str]:
    """
    Split markdown content into front matter metadata and body.

    A document without a leading ``---`` line has no front matter: the
    metadata is empty and the whole text is the body.

    Args:
        content: Raw markdown content.
        tag_delimiter: Delimiter used when joining YAML sequences for list
            fields such as ``tags``.

    Returns:
        Tuple of (metadata mapping of plain strings, body text).

    Raises:
        ParseError: If the block is unterminated or is not flat key/value pairs.
    """
    lines = content.splitlines()
    if not lines or lines[0].strip() != _DELIMITER:
        return {}, content

    end = None
    for index in range(1, len(lines)):
        if lines[index].strip() == _DELIMITER:
            end = index
            break

    if end is None:
        msg = "Unterminated front matter block (missing closing ---)"
        raise ParseError(msg, fragment=lines[0])

    block = "\n".join(lines[1:end])
    body = "\n".join(lines[end + 1 :])
    if content.endswith(("\n", "\r")) and body:
        body += "\n"

    return _load_block(block, tag_delimiter), body


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":  # noqa: PLR2004
        return value[1:-1]
    return value


def _load_sequence(key: str, text: str, line_no: int, tag_delimiter: str) -> str:
    """Read a YAML sequence (``[a, b]`` or ``- a`` lines) for a list field."""
    try:
        data = yaml.load(text, Loader=yaml.BaseLoader)  # noqa: S506
    except yaml.YAMLError as exc:
        msg = f'Invalid list for front matter field "{key}" on line {line_no}'
        raise ParseError(msg, fragment=text.strip()) from exc
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        msg = f'Front matter field "{key}" must be a list of plain values'
        raise ParseError(msg, fragment=text.strip())
    return f"{tag_delimiter} ".join(item.strip() for item in data if item.strip())


def _continues(line: str) -> bool:
    """Tell whether a line belongs to the value of the key above it."""
    return bool(line.strip()) and (line[:1].isspace() or line.startswith("- "))


def _load_block(block: str, tag_delimiter: str) -> dict[str, str]:
    """
    Read ``key: value`` lines, splitting each on its first colon.

    Values are plain strings; surrounding quotes are removed. List fields may
    also use a YAML sequence, either inline or as indented ``- item`` lines.
    """
    metadata: dict[str, str] = {}
    lines = block.splitlines()
    index = 0
    while index < len(lines):
        raw = lines[index]
        # Line numbers count the opening delimiter as line 1
        line_no = index + 2
        index += 1
        line = raw.strip()
        if not line:
            continue

        if raw[0].isspace():
            msg = f"Invalid front matter line {line_no}: {raw!r} (unexpected indentation)"
            raise ParseError(msg, fragment=line)

        key, sep, value = line.partition(":")
        key = key.strip()
        value = value.strip()
        if not sep:
            msg = f"Invalid front matter line {line_no}: {raw!r} (expected key: value)"
            raise ParseError(msg, fragment=line)
        if not key:
            msg = f"Invalid front matter line {line_no}: empty key"
            raise ParseError(msg, fragment=line)

        nested = []
        while index < len(lines) and _continues(lines[index]):
            nested.append(lines[index])
            index += 1

        if nested:
            if key not in LIST_FIELDS or value:
                msg = f'Front matter field "{key}" must be a plain value'
                raise ParseError(msg, fragment=key)
            metadata[key] = _load_sequence(key, "\n".join(nested), line_no, tag_delimiter)
        elif key in LIST_FIELDS and value.startswith("["):
            metadata[key] = _load_sequence(key, value, line_no, tag_delimiter)
        else:
            metadata[key] = _strip_quotes(value)
    return metadata


def split_list(value: str, delimiter: str = ",") -> list[str]:
    """Split a list-valued field on the delimiter, trimming and dropping empty items."""
    return [item.strip() for item in value.split(delimiter) if item.strip()]
