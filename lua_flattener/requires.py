"""Rewriting of self-relative ``require`` calls.

Scripts may require siblings relative to themselves with a string path::

    local Utils = require("@self/Utils")
    local Shared = require("@self/../Shared")

The bundled runtime does not resolve string paths relative to the caller, so
these calls are rewritten into instance navigation before the script is
compiled::

    local Utils = require(script:FindFirstChild("Utils"))
    local Shared = require(script.Parent:FindFirstChild("Shared"))

Only the ``@self`` form is touched. Plain module names and requires that
already take an instance expression are left alone.
"""

import re

from lua_flattener.luaenc import quote_string

SELF_TOKEN: str = "@self"

_SELF_ACCESSOR: str = "script"
_PARENT_ACCESSOR: str = ".Parent"

_SELF_REQUIRE_RE: re.Pattern[str] = re.compile(
    r"require\s*\(\s*(?P<quote>[\"'`])" + re.escape(SELF_TOKEN) + r"/(?P<path>(?:(?!(?P=quote)).)*)(?P=quote)\s*\)"
)


def navigation_expression(path: str) -> str:
    """Build the instance navigation expression for a self-relative path.

    :param path: Path after ``@self/`` (e.g. ``../Shared/Config``).
    :returns: A Lua expression rooted at ``script``.
    """

    expr: str = _SELF_ACCESSOR
    for segment in path.split("/"):
        if segment == "":
            continue
        if segment == "..":
            expr += _PARENT_ACCESSOR
        else:
            # Names are arbitrary strings, so never emit them as bare fields.
            expr += f":FindFirstChild({quote_string(segment)})"
    return expr


def rewrite_self_requires(source: str) -> str:
    """Rewrite every ``require("@self/...")`` call in ``source``.

    The scan restarts on the rewritten text until no call matches. This always
    terminates: a rewritten call has no quoted ``@self`` literal left.

    :param source: Script body.
    :returns: The rewritten body.
    """

    while True:
        m: re.Match[str] | None = _SELF_REQUIRE_RE.search(source)
        if m is None:
            return source
        replacement: str = f"require({navigation_expression(m.group('path'))})"
        source = source[0 : m.start()] + replacement + source[m.end() :]
