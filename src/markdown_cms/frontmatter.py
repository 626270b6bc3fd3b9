"""
Front-matter parsing and emission.

On disk every document is a ``---`` delimited YAML block, a blank line, and
the markdown body. Parsing accepts any YAML mapping; emission is restricted
to scalar values (string, number, boolean, null) and follows fixed rules:

- non-string scalars are written plain (``draft: true``, ``order: 3``)
- multi-line strings become a literal block (``key: |``) re-indented by two spaces
- strings containing ``:`` or ``"``, or that YAML would read back as something
  other than the same string, are double-quoted with escapes
- strings holding characters the YAML reader rejects (C1 controls, U+FFFE)
  or treats as line breaks (U+0085, U+2028) are always double-quoted
- every other string is written plain

Lists and nested mappings are rejected; callers that need them (tags, for
instance) pre-serialize the value as a string.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Mapping, Tuple

import yaml

from .errors import ValidationError

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(?:---|(.*?)\r?\n---)[ \t]*(?:\r?\n|\Z)", re.DOTALL)
DELIMITER = "---"
RESERVED_KEYS = frozenset({"id", "slug", "content"})

# Characters the YAML reader rejects or reads as line breaks; these are only
# ever written as escapes inside a double-quoted scalar. Surrogates pass
# through so the UTF-8 encode on write rejects them.
_ESCAPE_CHARS = re.compile(r"[^\t\n\x20-\x7e\xa0-\u2027\u202a-\ufffd\U00010000-\U0010ffff]")


class FrontMatterError(ValueError):
    """The front-matter block of a file is not a valid YAML mapping."""


def parse_document(text: str) -> Tuple[Dict[str, Any], str]:
    """Return (frontmatter, body). Files without a front-matter block yield an empty mapping."""
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    # The line break before the closing delimiter belongs to the YAML block
    yaml_text = f"{match.group(1)}\n" if match.group(1) else ""
    try:
        data = yaml.safe_load(yaml_text) or {}
    except yaml.YAMLError as exc:
        raise FrontMatterError(f"Invalid YAML front matter: {exc}") from exc
    if not isinstance(data, dict):
        raise FrontMatterError(f"Invalid YAML front matter: expected a mapping, got {type(data).__name__}")

    body = text[match.end():]
    # Drop the single separator line written by render_document
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    return data, body


def render_document(frontmatter: Mapping[str, Any], content: str) -> str:
    lines = [emit_field(str(key), value) for key, value in frontmatter.items() if key not in RESERVED_KEYS]
    block = "\n".join(lines)
    if block:
        block += "\n"
    return f"{DELIMITER}\n{block}{DELIMITER}\n\n{content}"


def emit_field(key: str, value: Any) -> str:
    name = _quote(key) if _needs_quotes(key) else key
    if value is None:
        return f"{name}: null"
    if isinstance(value, bool):
        return f"{name}: {'true' if value else 'false'}"
    if isinstance(value, int):
        return f"{name}: {value}"
    if isinstance(value, float):
        return f"{name}: {_format_float(value)}"
    if isinstance(value, str):
        if "\n" in value and not _ESCAPE_CHARS.search(value.replace("\r\n", "\n")):
            return _literal_block(name, value.replace("\r\n", "\n"))
        if _needs_quotes(value):
            return f"{name}: {_quote(value)}"
        return f"{name}: {value}"
    raise ValidationError(
        f"Front-matter field '{key}' must be a string, number, boolean or null; got {type(value).__name__}"
    )


def _needs_quotes(value: str) -> bool:
    if not value or ":" in value or '"' in value or "\n" in value or _ESCAPE_CHARS.search(value):
        return True
    try:
        loaded = yaml.safe_load(value)
    except yaml.YAMLError:
        return True
    return loaded != value


def _quote(value: str) -> str:
    escaped = []
    for char in value:
        if char == "\\":
            escaped.append("\\\\")
        elif char == '"':
            escaped.append('\\"')
        elif char == "\n":
            escaped.append("\\n")
        elif _ESCAPE_CHARS.match(char):
            escaped.append(_escape_char(char))
        else:
            escaped.append(char)
    return '"' + "".join(escaped) + '"'


def _escape_char(char: str) -> str:
    code = ord(char)
    if code <= 0xFF:
        return f"\\x{code:02x}"
    if code <= 0xFFFF:
        return f"\\u{code:04x}"
    return f"\\U{code:08x}"


def _literal_block(name: str, value: str) -> str:
    if value.endswith("\n\n"):
        chomp = "+"
    elif value.endswith("\n"):
        chomp = ""
    else:
        chomp = "-"

    lines = value.split("\n")
    if value.endswith("\n"):
        lines.pop()

    # Indentation is auto-detected from the first non-empty line unless stated
    first = next((line for line in lines if line.strip()), "")
    indent = "2" if first.startswith((" ", "\t")) else ""

    body = "\n".join(f"  {line}" if line else "" for line in lines)
    return f"{name}: |{indent}{chomp}\n{body}"


def _format_float(value: float) -> str:
    if math.isnan(value):
        return ".nan"
    if math.isinf(value):
        return ".inf" if value > 0 else "-.inf"
    text = repr(value)
    # YAML 1.1 floats need a dot in the mantissa
    if "e" in text and "." not in text:
        mantissa, exponent = text.split("e")
        text = f"{mantissa}.0e{exponent}"
    return text
