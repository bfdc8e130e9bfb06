"""Instance tree model.

The bundler operates on a forest of :class:`Node` objects produced by the model
reader. Only a closed set of instance classes can be bundled; see
:class:`NodeKind`.
"""

from dataclasses import dataclass, field
import enum


class NodeKind(enum.Enum):
    """Supported instance classes.

    The value of each member is the numeric tag written into the object tree.
    The bootstrap runtime indexes its class-name table with the same tags, so
    these numbers must never be reordered.
    """

    FOLDER = 1
    MODULE_SCRIPT = 2
    SCRIPT = 3
    LOCAL_SCRIPT = 4
    STRING_VALUE = 5

    @property
    def tag(self) -> int:
        return self.value

    @property
    def class_name(self) -> str:
        """Canonical class name, also used as the default display name."""

        return _CLASS_NAMES[self]

    @property
    def is_executable(self) -> bool:
        """Whether nodes of this kind carry a script body."""

        return self in (NodeKind.MODULE_SCRIPT, NodeKind.SCRIPT, NodeKind.LOCAL_SCRIPT)

    @property
    def supports_disabled(self) -> bool:
        """Whether nodes of this kind can be disabled."""

        return self in (NodeKind.SCRIPT, NodeKind.LOCAL_SCRIPT)

    @classmethod
    def from_class_name(cls, class_name: str) -> "NodeKind | None":
        """Look up a kind by its class name.

        :param class_name: Raw class name from the model.
        :returns: The matching kind, or ``None`` if the class is unsupported.
        """

        return _KINDS_BY_CLASS_NAME.get(class_name)


_CLASS_NAMES: dict[NodeKind, str] = {
    NodeKind.FOLDER: "Folder",
    NodeKind.MODULE_SCRIPT: "ModuleScript",
    NodeKind.SCRIPT: "Script",
    NodeKind.LOCAL_SCRIPT: "LocalScript",
    NodeKind.STRING_VALUE: "StringValue",
}

_KINDS_BY_CLASS_NAME: dict[str, NodeKind] = {name: kind for kind, name in _CLASS_NAMES.items()}


@dataclass(eq=False, slots=True)
class Node:
    """One instance in the source tree.

    Nodes compare and hash by identity, so two nodes with identical contents
    are still distinct entries in a :class:`~lua_flattener.references.ReferenceTable`.

    :ivar class_name: Raw class name as found in the model.
    :ivar name: Display name.
    :ivar children: Children, in model order.
    :ivar source: Script body (executable kinds only).
    :ivar disabled: Disabled flag (``Script``/``LocalScript`` only).
    :ivar value: Stored value (``StringValue`` only).
    """

    class_name: str
    name: str
    children: list["Node"] = field(default_factory=list)
    source: str | None = None
    disabled: bool = False
    value: str | None = None

    @property
    def kind(self) -> NodeKind | None:
        return NodeKind.from_class_name(self.class_name)

    def find_child(self, name: str) -> "Node | None":
        """Return the first child named ``name``, if any."""

        for child in self.children:
            if child.name == name:
                return child
        return None
