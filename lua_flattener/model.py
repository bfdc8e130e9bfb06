"""Roblox XML model (``.rbxmx``) reader.

Only what the bundler needs is read: class, name, script source, disabled
state and string values. Every other property is ignored.
"""

import logging
import pathlib
import xml.etree.ElementTree as ET

from lua_flattener.errors import BuildError
from lua_flattener.nodes import Node


class ModelError(BuildError):
    """Raised when a model file cannot be read."""


def load_rbxmx(path: pathlib.Path, *, logger: logging.Logger | None = None) -> list[Node]:
    """Read an ``.rbxmx`` file into a forest of nodes.

    :param path: Model file.
    :param logger: Optional logger for debug output.
    :returns: Root-level nodes, in document order.
    :raises ModelError: If the file cannot be read or parsed.
    """

    try:
        text: str = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ModelError(f"Could not read model file: {path}") from e

    roots: list[Node] = parse_rbxmx(text)
    if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"lua-flattener: read {len(roots)} root instances from {path}")
    return roots


def parse_rbxmx(text: str) -> list[Node]:
    """Parse ``.rbxmx`` XML text into a forest of nodes.

    :param text: XML document.
    :returns: Root-level nodes, in document order.
    :raises ModelError: If the document is malformed.
    """

    try:
        doc: ET.Element = ET.fromstring(text)
    except ET.ParseError as e:
        raise ModelError(f"Malformed model XML: {e}") from e

    if doc.tag != "roblox":
        raise ModelError(f"Not a Roblox XML model (root element is <{doc.tag}>).")

    return [_read_item(item) for item in doc.findall("Item")]


def _read_item(item: ET.Element) -> Node:
    class_name: str | None = item.get("class")
    if class_name is None:
        raise ModelError("Model <Item> is missing its class attribute.")

    name: str = class_name
    source: str | None = None
    value: str | None = None
    disabled: bool = False

    props: ET.Element | None = item.find("Properties")
    if props is not None:
        for prop in props:
            prop_name: str | None = prop.get("name")
            text: str = prop.text or ""
            if prop_name == "Name":
                name = text
            elif prop_name == "Source":
                source = text
            elif prop_name == "Value" and prop.tag == "string":
                value = text
            elif prop_name == "Disabled" and prop.tag == "bool":
                disabled = _read_bool(text)
            elif prop_name == "Enabled" and prop.tag == "bool":
                disabled = _read_bool(text) is False

    children: list[Node] = [_read_item(child) for child in item.findall("Item")]
    return Node(
        class_name=class_name,
        name=name,
        children=children,
        source=source,
        disabled=disabled,
        value=value,
    )


def _read_bool(text: str) -> bool:
    return text.strip().lower() == "true"
