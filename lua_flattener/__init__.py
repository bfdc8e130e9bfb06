"""lua-flattener.

A small build utility that bundles a tree of Roblox-style instances (folders,
scripts, module scripts, values) into a single, self-contained ``.lua`` file.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
