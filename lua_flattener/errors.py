"""Exceptions shared across the bundler."""


class BuildError(RuntimeError):
    """Raised when bundling fails."""
