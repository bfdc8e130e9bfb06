"""Tests for bundle configuration."""

import pytest

from lua_flattener import __version__
from lua_flattener.config import DEFAULT_ENV_NAME, BundleConfig, ConfigError, resolve_bundle_config


def test_defaults() -> None:
    config = resolve_bundle_config()

    assert config == BundleConfig()
    assert config.env_name == DEFAULT_ENV_NAME
    assert config.version == __version__
    assert config.pretty is True
    assert config.include_line_offsets is True
    assert config.sub_path is None


def test_minify_disables_pretty_and_offsets() -> None:
    config = resolve_bundle_config(minify=True)

    assert config.pretty is False
    assert config.include_line_offsets is False


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("MyProject/src", ("MyProject", "src")),
        ("/MyProject/src/", ("MyProject", "src")),
        ("Only", ("Only",)),
        ("Has Space/x", ("Has Space", "x")),
    ],
)
def test_sub_path_parsing(raw: str, expected: tuple[str, ...]) -> None:
    assert resolve_bundle_config(sub_path=raw).sub_path == expected


@pytest.mark.parametrize("raw", ["", "/", "a//b", "  "])
def test_invalid_sub_path(raw: str) -> None:
    with pytest.raises(ConfigError):
        resolve_bundle_config(sub_path=raw)


def test_invalid_env_name() -> None:
    with pytest.raises(ConfigError):
        resolve_bundle_config(env_name="   ")
    with pytest.raises(ConfigError):
        resolve_bundle_config(env_name="two\nlines")


def test_negative_offset_lines() -> None:
    with pytest.raises(ConfigError):
        resolve_bundle_config(extra_offset_lines=-1)
    assert resolve_bundle_config(extra_offset_lines=4).extra_offset_lines == 4
