"""Lua literal encoding.

Turns plain Python data (``None``, bools, numbers, strings, lists, dicts) into
Lua table-constructor source text.
"""

from collections.abc import Mapping
import math
import re


class LuaEncodeError(TypeError):
    """Raised when a value has no Lua literal representation."""


_IDENTIFIER_RE: re.Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_LUA_KEYWORDS: frozenset[str] = frozenset(
    {
        "and",
        "break",
        "do",
        "else",
        "elseif",
        "end",
        "false",
        "for",
        "function",
        "goto",
        "if",
        "in",
        "local",
        "nil",
        "not",
        "or",
        "repeat",
        "return",
        "then",
        "true",
        "until",
        "while",
    }
)

_SIMPLE_ESCAPES: dict[str, str] = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def is_identifier(name: str) -> bool:
    """Return ``True`` if ``name`` can be used as a bare Lua field name."""

    return _IDENTIFIER_RE.match(name) is not None and name not in _LUA_KEYWORDS


def quote_string(value: str) -> str:
    """Quote a string as a double-quoted Lua literal.

    The result never contains a raw line break, so it always occupies exactly
    one line of the emitted file.

    :param value: String to quote.
    :returns: Lua string literal.
    """

    parts: list[str] = ['"']
    for ch in value:
        escaped: str | None = _SIMPLE_ESCAPES.get(ch)
        if escaped is not None:
            parts.append(escaped)
        elif ord(ch) < 32 or ord(ch) == 127:
            # Always three digits so a following digit is not absorbed.
            parts.append(f"\\{ord(ch):03d}")
        else:
            parts.append(ch)
    parts.append('"')
    return "".join(parts)


def encode(value: object, *, pretty: bool = False, indent: str = "\t") -> str:
    """Encode a value as Lua source text.

    :param value: Value to encode.
    :param pretty: Emit one table entry per line with indentation.
    :param indent: Indentation unit for ``pretty`` output.
    :returns: Lua expression text.
    :raises LuaEncodeError: If a value cannot be encoded.
    """

    return _encode(value, pretty=pretty, indent=indent, depth=0)


def _encode(value: object, *, pretty: bool, indent: str, depth: int) -> str:
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "0/0"
        if math.isinf(value):
            return "math.huge" if value > 0 else "-math.huge"
        return repr(value)
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, (list, tuple)):
        items: list[str] = [_encode(v, pretty=pretty, indent=indent, depth=depth + 1) for v in value]
        return _join_table(items, pretty=pretty, indent=indent, depth=depth)
    if isinstance(value, Mapping):
        entries: list[str] = []
        for k, v in value.items():
            encoded: str = _encode(v, pretty=pretty, indent=indent, depth=depth + 1)
            sep: str = " = " if pretty is True else "="
            entries.append(f"{_encode_key(k)}{sep}{encoded}")
        return _join_table(entries, pretty=pretty, indent=indent, depth=depth)

    raise LuaEncodeError(f"Cannot encode {type(value).__name__} as a Lua literal: {value!r}")


def _encode_key(key: object) -> str:
    if isinstance(key, str) and is_identifier(key) is True:
        return key
    if isinstance(key, bool) or not isinstance(key, (str, int, float)):
        raise LuaEncodeError(f"Unsupported Lua table key: {key!r}")
    return f"[{_encode(key, pretty=False, indent='', depth=0)}]"


def _join_table(entries: list[str], *, pretty: bool, indent: str, depth: int) -> str:
    if len(entries) == 0:
        return "{}"
    if pretty is False:
        return "{" + ",".join(entries) + "}"

    inner: str = indent * (depth + 1)
    outer: str = indent * depth
    body: str = "".join(f"{inner}{entry},\n" for entry in entries)
    return "{\n" + body + outer + "}"
