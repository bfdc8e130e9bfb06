"""Reference id assignment.

Every node reachable from the bundle roots gets a dense, 1-based integer id
from a single pre-order walk. Ids are the join key between the object tree,
the closure table and the line-offset table of the emitted file.

Unsupported nodes (and their subtrees) still consume ids even though they never
appear in the output; this keeps ids stable when support for a kind changes.
"""

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from lua_flattener.nodes import Node


@dataclass(frozen=True, slots=True)
class ReferenceTable:
    """Bijection between nodes and reference ids.

    :ivar refs: Node to reference id.
    :ivar nodes: Reference id order; ``nodes[ref - 1]`` is the node for ``ref``.
    """

    refs: dict[Node, int]
    nodes: tuple[Node, ...]

    def ref_of(self, node: Node) -> int:
        """Return the reference id of ``node``.

        :raises KeyError: If ``node`` was not visited while assigning ids.
        """

        return self.refs[node]

    def node_of(self, ref: int) -> Node:
        """Return the node with reference id ``ref``.

        :raises KeyError: If ``ref`` is out of range.
        """

        if ref < 1 or ref > len(self.nodes):
            raise KeyError(ref)
        return self.nodes[ref - 1]

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[tuple[int, Node]]:
        for i, node in enumerate(self.nodes):
            yield i + 1, node


def assign_references(roots: Sequence[Node]) -> ReferenceTable:
    """Assign reference ids by a pre-order depth-first walk.

    A node gets its id before any of its descendants, and a root's whole
    subtree is numbered before the next root.

    :param roots: Root-level nodes, in order.
    :returns: The reference table.
    """

    order: list[Node] = []
    refs: dict[Node, int] = {}

    # Explicit stack; model trees can be deeper than the recursion limit.
    stack: list[Node] = list(reversed(roots))
    while len(stack) > 0:
        node: Node = stack.pop()
        if node in refs:
            continue
        order.append(node)
        refs[node] = len(order)
        stack.extend(reversed(node.children))

    return ReferenceTable(refs=refs, nodes=tuple(order))
