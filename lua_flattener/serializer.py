"""Structural and closure serialization.

Produces the three reference-indexed artifacts embedded in a bundle:

- the object tree: one positional record per supported node,
  ``{ref, tag, [properties], [children]}``, with empty optional blocks left out;
- the closure table: ``[ref] = function ... end`` for every compiled script;
- the line-offset table: ``[ref] = first line of that closure's body``, only
  when debug mapping is requested.

Closures and line offsets are both produced from the same list of artifacts,
sorted by reference id, so both tables always have the same keys in the same
order.
"""

from collections.abc import Sequence
from dataclasses import dataclass
import logging

from lua_flattener.luaenc import encode
from lua_flattener.nodes import Node, NodeKind
from lua_flattener.references import ReferenceTable
from lua_flattener.validator import ClosureArtifact, ClosureSet

ENTRY_MODULE_NAME: str = "MainModule"

NAME_SLOT: int = 1

Record = list[object]


@dataclass(frozen=True, slots=True)
class EmissionSet:
    """Serialized bundle artifacts.

    :ivar tree: Object tree records (Python form).
    :ivar closures: Reference id to closure source, ascending.
    :ivar line_offsets: Reference id to first body line, or ``None`` without debug mapping.
    :ivar tree_text: Lua text for ``tree``.
    :ivar closures_text: Lua text for ``closures``.
    :ivar offsets_text: Lua text for ``line_offsets`` (``nil`` without debug mapping).
    """

    tree: list[Record]
    closures: dict[int, str]
    line_offsets: dict[int, int] | None
    tree_text: str
    closures_text: str
    offsets_text: str


def node_properties(node: Node, kind: NodeKind) -> dict[object, object]:
    """Build the properties block of a record (possibly empty).

    The display name goes into positional slot 1 and is only written when it
    differs from the kind's class name; the runtime defaults it otherwise.
    """

    props: dict[object, object] = {}
    if node.name != kind.class_name:
        props[NAME_SLOT] = node.name
    if kind is NodeKind.STRING_VALUE and node.value:
        props["Value"] = node.value
    return props


def build_object_tree(
    roots: Sequence[Node],
    refs: ReferenceTable,
    *,
    logger: logging.Logger,
) -> list[Record]:
    """Encode the supported part of the forest as nested records.

    Unsupported nodes are dropped together with their whole subtree; their
    descendants are never promoted to the nearest supported ancestor.

    :param roots: Bundle roots.
    :param refs: Reference table for ``roots``.
    :param logger: Logger for warnings about unsupported nodes.
    :returns: Root records.
    """

    out: list[Record] = []
    for root in roots:
        record: Record | None = _build_record(root, refs=refs, logger=logger)
        if record is not None:
            out.append(record)
    return out


def _build_record(node: Node, *, refs: ReferenceTable, logger: logging.Logger) -> Record | None:
    kind: NodeKind | None = node.kind
    if kind is None:
        logger.warning(
            f"lua-flattener: skipping unsupported {node.class_name} {node.name!r} "
            f"(ref {refs.ref_of(node)}) and its descendants"
        )
        return None

    record: Record = [refs.ref_of(node), kind.tag]

    props: dict[object, object] = node_properties(node, kind)
    if len(props) > 0:
        record.append(props)

    children: list[Record] = []
    for child in node.children:
        child_record: Record | None = _build_record(child, refs=refs, logger=logger)
        if child_record is not None:
            children.append(child_record)
    if len(children) > 0:
        record.append(children)

    return record


def split_record(record: Record) -> tuple[dict[object, object] | None, list[Record] | None]:
    """Return the ``(properties, children)`` blocks of a record.

    When properties are omitted the children list moves up into slot 3; a
    children list is told apart by its first element being a record.
    """

    props: dict[object, object] | None = None
    children: list[Record] | None = None
    for block in record[2:]:
        if isinstance(block, dict):
            props = block
        elif isinstance(block, list):
            children = block
    return props, children


def find_entry_ref(tree: Sequence[Record]) -> int | None:
    """Pick the record whose load result the bundle returns.

    :param tree: Root records.
    :returns: The sole root's reference id, else that of a root
        ``ModuleScript`` named ``MainModule``, else ``None``.
    """

    if len(tree) == 1:
        return _record_ref(tree[0])

    for record in tree:
        if record[1] != NodeKind.MODULE_SCRIPT.tag:
            continue
        props, _ = split_record(record)
        name: object = NodeKind.MODULE_SCRIPT.class_name
        if props is not None and NAME_SLOT in props:
            name = props[NAME_SLOT]
        if name == ENTRY_MODULE_NAME:
            return _record_ref(record)
    return None


def _record_ref(record: Record) -> int:
    ref: object = record[0]
    if not isinstance(ref, int):
        raise TypeError(f"Malformed record reference: {ref!r}")
    return ref


def compute_line_offsets(artifacts: Sequence[ClosureArtifact], *, start_line: int) -> dict[int, int]:
    """Compute the first output line of each closure body.

    :param artifacts: Closures in emission order (ascending reference id).
    :param start_line: Line of the first closure in the output file.
    :returns: Reference id to line number.
    """

    offsets: dict[int, int] = {}
    line: int = start_line
    for artifact in artifacts:
        offsets[artifact.ref] = line
        line += artifact.line_count
    return offsets


def encode_closures(artifacts: Sequence[ClosureArtifact], *, pretty: bool) -> str:
    """Render the closure table.

    Entries are always one per line, in both modes, because line offsets are
    computed from each closure's line count alone.
    """

    indent: str = "\t" if pretty is True else ""
    sep: str = " = " if pretty is True else "="
    entries: str = "".join(f"{indent}[{a.ref}]{sep}{a.source},\n" for a in artifacts)
    return "{\n" + entries + "}"


def serialize(
    roots: Sequence[Node],
    refs: ReferenceTable,
    closure_set: ClosureSet,
    *,
    include_line_offsets: bool,
    pretty: bool,
    first_closure_line: int,
    extra_offset_lines: int = 0,
    logger: logging.Logger,
) -> EmissionSet:
    """Serialize a bundle into its three embedded artifacts.

    :param roots: Bundle roots.
    :param refs: Reference table for ``roots``.
    :param closure_set: Compiled closures.
    :param include_line_offsets: Emit the debug line-offset table.
    :param pretty: Indent the emitted tables.
    :param first_closure_line: Line of the first closure entry in the runtime template.
    :param extra_offset_lines: Lines the caller will prepend to the output.
    :param logger: Logger for warnings and debug output.
    :returns: The emission set.
    """

    tree: list[Record] = build_object_tree(roots, refs, logger=logger)

    artifacts: list[ClosureArtifact] = sorted(closure_set.artifacts, key=lambda a: a.ref)
    closures: dict[int, str] = {a.ref: a.source for a in artifacts}

    line_offsets: dict[int, int] | None = None
    offsets_text: str = "nil"
    if include_line_offsets is True:
        line_offsets = compute_line_offsets(
            artifacts,
            start_line=first_closure_line + extra_offset_lines,
        )
        offsets_text = encode(line_offsets, pretty=pretty)

    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(
            f"lua-flattener: serialized {len(refs)} refs, {len(closures)} closures, "
            f"offsets={'on' if line_offsets is not None else 'off'}"
        )

    return EmissionSet(
        tree=tree,
        closures=closures,
        line_offsets=line_offsets,
        tree_text=encode(tree, pretty=pretty),
        closures_text=encode_closures(artifacts, pretty=pretty),
        offsets_text=offsets_text,
    )
