"""Bundle configuration.

Validates the user-facing knobs (environment name, minification, sub-path,
line-offset adjustment) into a frozen :class:`BundleConfig`.
"""

from dataclasses import dataclass

from lua_flattener import __version__


class ConfigError(ValueError):
    """Raised when bundle options cannot be resolved into a valid config."""


DEFAULT_ENV_NAME: str = "LuaFlattenerRuntime"


@dataclass(frozen=True, slots=True)
class BundleConfig:
    """Bundle configuration.

    :ivar env_name: Display name of the bundle environment.
    :ivar minify: Minify the output; disables pretty tables and line mapping.
    :ivar extra_offset_lines: Lines that will be prepended to the output file.
    :ivar sub_path: Names leading to the node to bundle instead of the model roots.
    :ivar verbose: Emit per-node debug output.
    :ivar version: Version string embedded in the bundle.
    """

    env_name: str = DEFAULT_ENV_NAME
    minify: bool = False
    extra_offset_lines: int = 0
    sub_path: tuple[str, ...] | None = None
    verbose: bool = False
    version: str = __version__

    @property
    def pretty(self) -> bool:
        return self.minify is False

    @property
    def include_line_offsets(self) -> bool:
        # Minification rewrites the layout, so lines no longer map back.
        return self.minify is False


def resolve_bundle_config(
    *,
    env_name: str | None = None,
    minify: bool = False,
    extra_offset_lines: int = 0,
    sub_path: str | None = None,
    verbose: bool = False,
) -> BundleConfig:
    """Resolve user-supplied options into a :class:`BundleConfig`.

    :param env_name: Optional environment display name.
    :param minify: Minify the output.
    :param extra_offset_lines: Lines the caller prepends to the output.
    :param sub_path: Optional ``/``-separated path to the node to bundle.
    :param verbose: Enable per-node debug output.
    :returns: Resolved config.
    :raises ConfigError: If an option is invalid.
    """

    name: str = DEFAULT_ENV_NAME if env_name is None else env_name
    if len(name.strip()) == 0:
        raise ConfigError("Environment name must not be empty.")
    if "\n" in name or "\r" in name:
        raise ConfigError(f"Environment name must be a single line: {name!r}")

    if extra_offset_lines < 0:
        raise ConfigError(f"Invalid extra offset lines {extra_offset_lines}; expected >= 0.")

    return BundleConfig(
        env_name=name,
        minify=minify,
        extra_offset_lines=extra_offset_lines,
        sub_path=_parse_sub_path(sub_path),
        verbose=verbose,
    )


def _parse_sub_path(sub_path: str | None) -> tuple[str, ...] | None:
    """Split a ``/``-separated sub-path into names.

    A single leading or trailing ``/`` is tolerated; empty names in between are not.

    :raises ConfigError: If the path is empty or has an empty segment.
    """

    if sub_path is None:
        return None

    trimmed: str = sub_path.strip()
    if trimmed.startswith("/") is True:
        trimmed = trimmed[1:]
    if trimmed.endswith("/") is True:
        trimmed = trimmed[:-1]
    if trimmed == "":
        raise ConfigError("Sub-path must name at least one instance.")

    parts: list[str] = trimmed.split("/")
    for part in parts:
        if part == "":
            raise ConfigError(f"Invalid sub-path {sub_path!r}: empty instance name.")
    return tuple(parts)
