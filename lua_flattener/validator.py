"""Script compile gate.

Every executable node is syntax-checked before it is embedded. A valid body is
wrapped into a closure that receives its environment from the loader; an
invalid body is replaced by a closure that raises the diagnostic when the
bundle later runs. A single bad script therefore never aborts a build, but the
number of such stand-ins is reported back to the caller.
"""

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
import logging
import pathlib
import re

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from lua_flattener.luaenc import quote_string
from lua_flattener.nodes import Node, NodeKind
from lua_flattener.references import ReferenceTable
from lua_flattener.requires import rewrite_self_requires


class ScriptSyntaxError(ValueError):
    """Raised when a script body does not compile.

    :ivar diagnostic: One-line diagnostic (``<chunk>:<line>: <message>``).
    :ivar line: 1-based line of the problem, when known.
    """

    def __init__(self, diagnostic: str, *, line: int | None = None) -> None:
        super().__init__(diagnostic)
        self.diagnostic = diagnostic
        self.line = line


@dataclass(frozen=True, slots=True)
class ClosureArtifact:
    """Closure emitted for one script node.

    :ivar ref: Reference id of the node.
    :ivar chunk_name: Dotted path of the node, used in diagnostics.
    :ivar source: Lua function expression.
    :ivar line_count: Number of lines ``source`` occupies in the output.
    :ivar failed: ``True`` if this is a deferred-error stand-in.
    """

    ref: int
    chunk_name: str
    source: str
    line_count: int
    failed: bool = False


@dataclass(frozen=True, slots=True)
class ClosureSet:
    """All closures of one bundle, sorted by reference id."""

    artifacts: tuple[ClosureArtifact, ...]

    @property
    def failed_compilations(self) -> int:
        return sum(1 for a in self.artifacts if a.failed is True)

    def refs(self) -> list[int]:
        return [a.ref for a in self.artifacts]


PLACEHOLDER_DIAGNOSTIC: str = "failed to compile script (no diagnostic available)"

_CLOSURE_HEADER: str = (
    "function(context)"
    "local bundle,script,require=context.bundle,context.script,context.require "
    "return(function(...)"
)
_CLOSURE_FOOTER: str = "\nend)()end"

_GRAMMAR_PATH: pathlib.Path = pathlib.Path(__file__).with_name("lua.lark")
_GRAMMAR_SRC: str = _GRAMMAR_PATH.read_text(encoding="utf-8")

_LOOP_RULES: frozenset[str] = frozenset(
    {"while_stat", "repeat_stat", "numeric_for_stat", "generic_for_stat"}
)

_CALL_SUFFIXES: frozenset[str] = frozenset({"call_suffix", "method_suffix"})
_ASSIGNABLE_SUFFIXES: frozenset[str] = frozenset({"field_suffix", "index_suffix"})

# Spelling required of the leading names of statements the grammar reads as
# bare NAME sequences.
_KEYWORD_NAMES: dict[str, tuple[str, ...]] = {
    "continue_stat": ("continue",),
    "type_alias_stat": ("type",),
    "export_type_alias_stat": ("export", "type"),
}

_INCOMPLETE_STATEMENT: str = "incomplete statement: expected assignment or a function call"
_NOT_ASSIGNABLE: str = "assigned expression must be a variable or a field"

_LINE_RE: re.Pattern[str] = re.compile(r"line (\d+)")


_PARSER: Lark = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    lexer="basic",
    start="start",
    propagate_positions=True,
    maybe_placeholders=False,
)


def check_syntax(source: str, *, chunk_name: str) -> None:
    """Parse and compile-check a script body.

    :param source: Script body (newlines normalized to ``\\n``).
    :param chunk_name: Name used as the diagnostic prefix.
    :raises ScriptSyntaxError: If the body does not compile.
    """

    try:
        tree: Tree = _PARSER.parse(source)
    except UnexpectedInput as e:
        line, message = _describe_parse_error(e, source=source)
        if line is None:
            raise ScriptSyntaxError(f"{chunk_name}: {message}") from e
        raise ScriptSyntaxError(f"{chunk_name}:{line}: {message}", line=line) from e

    _check_compile_rules(tree, chunk_name=chunk_name)


def _describe_parse_error(e: UnexpectedInput, *, source: str) -> tuple[int | None, str]:
    """Best-effort extraction of a line number and message from a lark error.

    :param e: Parse error.
    :param source: Parsed source (used to locate end of input).
    :returns: ``(line, message)``; ``line`` is ``None`` when unknown.
    """

    last_line: int = source.count("\n") + 1

    if isinstance(e, UnexpectedCharacters):
        return e.line, f"unexpected symbol near '{e.char}'"
    if isinstance(e, UnexpectedToken):
        if e.token.type == "$END":
            return last_line, "unexpected <eof>"
        return e.line, f"unexpected symbol near '{e.token.value}'"
    if isinstance(e, UnexpectedEOF):
        return last_line, "unexpected <eof>"

    # Unknown lark error type: fall back to its text.
    lines: list[str] = str(e).strip().splitlines()
    if len(lines) == 0:
        return None, PLACEHOLDER_DIAGNOSTIC
    m: re.Match[str] | None = _LINE_RE.search(lines[0])
    if m is None:
        return None, lines[0]
    return int(m.group(1)), lines[0]


def _check_compile_rules(tree: Tree, *, chunk_name: str) -> None:
    """Reject constructs that parse but do not compile.

    - Expression statements that are not calls, and assignments to
      something other than a name, field or index.
    - ``continue`` and type aliases spelled with other leading names.
    - ``break``/``continue`` outside a loop.
    - ``...`` outside a vararg function (the main chunk is vararg).
    """

    # (subtree, inside vararg function, inside loop)
    stack: list[tuple[Tree, bool, bool]] = [(tree, True, False)]
    while len(stack) > 0:
        node, vararg, loop = stack.pop()
        for child in node.children:
            if not isinstance(child, Tree):
                continue
            data: str = str(child.data)
            _check_statement_form(child, chunk_name=chunk_name)
            if data == "func_body":
                stack.append((child, _declares_vararg(child), False))
            elif data in _LOOP_RULES:
                stack.append((child, vararg, True))
            elif data in ("break_stat", "continue_stat"):
                if loop is False:
                    word: str = "break" if data == "break_stat" else "continue"
                    _raise_at(child, chunk_name, f"'{word}' outside a loop")
            elif data == "vararg":
                if vararg is False:
                    _raise_at(child, chunk_name, "cannot use '...' outside a vararg function")
            else:
                stack.append((child, vararg, loop))


def _check_statement_form(node: Tree, *, chunk_name: str) -> None:
    data: str = str(node.data)

    if data == "call_stat":
        if _last_suffix(node.children[0]) not in _CALL_SUFFIXES:
            _raise_at(node, chunk_name, _INCOMPLETE_STATEMENT)
    elif data == "assign_stat":
        # Targets come first; the values are wrapped in an explist.
        for target in node.children:
            if isinstance(target, Tree) and target.data == "suffixed_exp" and _is_assignable(target) is False:
                _raise_at(target, chunk_name, _NOT_ASSIGNABLE)
    elif data == "compound_assign_stat":
        if _is_assignable(node.children[0]) is False:
            _raise_at(node, chunk_name, _NOT_ASSIGNABLE)
    elif data in _KEYWORD_NAMES:
        expected: tuple[str, ...] = _KEYWORD_NAMES[data]
        names: list[str] = [str(t) for t in node.children[0 : len(expected)] if isinstance(t, Token)]
        if tuple(names) != expected:
            _raise_at(node, chunk_name, _INCOMPLETE_STATEMENT)


def _last_suffix(suffixed: Tree) -> str | None:
    """Rule name of the last suffix of a ``suffixed_exp``, ``None`` if it has none."""

    if len(suffixed.children) < 2:
        return None
    return str(suffixed.children[-1].data)


def _is_assignable(suffixed: Tree) -> bool:
    suffix: str | None = _last_suffix(suffixed)
    if suffix is None:
        head: Tree = suffixed.children[0]
        return head.data == "name_exp"
    return suffix in _ASSIGNABLE_SUFFIXES


def _declares_vararg(func_body: Tree) -> bool:
    for child in func_body.children:
        if isinstance(child, Tree) and child.data == "param_list":
            for param in child.children:
                if isinstance(param, Tree) and param.data == "vararg_param":
                    return True
    return False


def _raise_at(tree: Tree, chunk_name: str, message: str) -> None:
    line: int | None = None
    if tree.meta.empty is False:
        line = tree.meta.line
    if line is None:
        raise ScriptSyntaxError(f"{chunk_name}: {message}")
    raise ScriptSyntaxError(f"{chunk_name}:{line}: {message}", line=line)


def normalize_source(source: str) -> str:
    """Normalize line endings and neutralize a leading shebang line.

    The shebang is turned into a comment rather than removed so line numbers
    are preserved.
    """

    text: str = source.replace("\r\n", "\n").replace("\r", "\n")
    if text.startswith("#") is True:
        text = "--" + text[1:]
    return text


def wrap_closure(body: str) -> str:
    """Wrap a valid body into the loader-facing closure expression.

    The body's first line shares the closure's first line, so the closure
    spans exactly one line more than the body.
    """

    return _CLOSURE_HEADER + body + _CLOSURE_FOOTER


def error_closure(diagnostic: str) -> str:
    """Build a closure that raises ``diagnostic`` when invoked. Always one line."""

    return f"function()error({quote_string(diagnostic)},0)end"


def compile_node(
    node: Node,
    *,
    ref: int,
    chunk_name: str,
    logger: logging.Logger,
) -> ClosureArtifact | None:
    """Compile a single executable node.

    :param node: Executable node.
    :param ref: Reference id of ``node``.
    :param chunk_name: Dotted path of ``node`` for diagnostics.
    :param logger: Logger for warnings.
    :returns: The closure artifact, or ``None`` for disabled scripts.
    """

    kind: NodeKind | None = node.kind
    if kind is None or kind.is_executable is False:
        return None
    if kind.supports_disabled is True and node.disabled is True:
        if logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"lua-flattener: skipping disabled {kind.class_name} {chunk_name}")
        return None

    body: str = rewrite_self_requires(normalize_source(node.source or ""))
    try:
        check_syntax(body, chunk_name=chunk_name)
    except ScriptSyntaxError as e:
        lines: list[str] = e.diagnostic.splitlines()
        diagnostic: str = lines[0] if len(lines) > 0 else PLACEHOLDER_DIAGNOSTIC
        logger.warning(f"lua-flattener: failed to compile {chunk_name}: {diagnostic}")
        return ClosureArtifact(
            ref=ref,
            chunk_name=chunk_name,
            source=error_closure(diagnostic),
            line_count=1,
            failed=True,
        )

    return ClosureArtifact(
        ref=ref,
        chunk_name=chunk_name,
        source=wrap_closure(body),
        line_count=body.count("\n") + 2,
    )


def iter_supported(roots: Sequence[Node]) -> Iterator[tuple[Node, str]]:
    """Yield supported nodes in reference order with their dotted paths.

    Unsupported nodes are skipped together with their whole subtree.
    """

    stack: list[tuple[Node, str]] = [(root, root.name) for root in reversed(roots)]
    while len(stack) > 0:
        node, path = stack.pop()
        if node.kind is None:
            continue
        yield node, path
        for child in reversed(node.children):
            stack.append((child, f"{path}.{child.name}"))


def compile_closures(
    roots: Sequence[Node],
    refs: ReferenceTable,
    *,
    logger: logging.Logger,
) -> ClosureSet:
    """Compile every executable node reachable from ``roots``.

    :param roots: Bundle roots.
    :param refs: Reference table for ``roots``.
    :param logger: Logger for warnings and debug output.
    :returns: Closures sorted by reference id, with the failure tally.
    """

    artifacts: list[ClosureArtifact] = []
    for node, path in iter_supported(roots):
        artifact: ClosureArtifact | None = compile_node(
            node,
            ref=refs.ref_of(node),
            chunk_name=path,
            logger=logger,
        )
        if artifact is not None:
            artifacts.append(artifact)

    artifacts.sort(key=lambda a: a.ref)
    return ClosureSet(artifacts=tuple(artifacts))
