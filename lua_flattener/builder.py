"""Bundle builder.

This module implements a pragmatic "single file" bundler for instance trees:

- It assigns every node of the model a stable reference id.
- It rewrites ``require("@self/...")`` calls and compile-checks every script,
  replacing scripts that do not compile with closures that raise the
  diagnostic at run time.
- It serializes the tree, the closures and (optionally) a line-offset table
  and substitutes them into a Lua runtime that rebuilds the tree and emulates
  ``require`` when the bundle is executed.

Model files are read from ``.rbxmx`` directly; Rojo projects are built to
``.rbxmx`` with ``rojo`` first. Minification is delegated to ``darklua``.
"""

from collections.abc import Sequence
from dataclasses import dataclass
import json
import logging
import pathlib
import shutil
import subprocess
import tempfile
import time

from lua_flattener.config import BundleConfig
from lua_flattener.errors import BuildError
from lua_flattener.model import load_rbxmx
from lua_flattener.nodes import Node
from lua_flattener.references import ReferenceTable, assign_references
from lua_flattener.runtime import CLOSURES_FIRST_LINE, render_bundle
from lua_flattener.serializer import EmissionSet, find_entry_ref, serialize
from lua_flattener.validator import ClosureSet, compile_closures

__all__: list[str] = ["BuildError", "BundleResult", "build_bundle_file", "bundle_tree", "resolve_sub_path"]

_DARKLUA_CONFIG: dict[str, object] = {
    "generator": "dense",
    "rules": [
        "remove_comments",
        "remove_spaces",
        "compute_expression",
        "remove_unused_if_branch",
        "remove_unused_while",
        "filter_after_early_return",
        "remove_empty_do",
        "remove_method_definition",
        "convert_index_to_field",
    ],
}


@dataclass(frozen=True, slots=True)
class BundleResult:
    """Outcome of a bundle run.

    :ivar source: Generated Lua source.
    :ivar failed_compilations: Scripts replaced by deferred-error closures.
    :ivar entry_ref: Reference id whose load result the bundle returns, if any.
    """

    source: str
    failed_compilations: int
    entry_ref: int | None


def resolve_sub_path(roots: Sequence[Node], sub_path: Sequence[str]) -> Node:
    """Find the node named by ``sub_path``, starting at the model roots.

    :param roots: Model roots.
    :param sub_path: Instance names, outermost first.
    :returns: The selected node.
    :raises BuildError: If any name along the path does not exist.
    """

    if len(sub_path) == 0:
        raise BuildError("Sub-path must name at least one instance.")

    current: Node | None = None
    for root in roots:
        if root.name == sub_path[0]:
            current = root
            break
    walked: list[str] = [sub_path[0]]
    if current is None:
        raise BuildError(f"Sub-path {'/'.join(sub_path)!r} did not resolve: no root named {sub_path[0]!r}.")

    for name in sub_path[1:]:
        child: Node | None = current.find_child(name)
        if child is None:
            raise BuildError(
                f"Sub-path {'/'.join(sub_path)!r} did not resolve: {'/'.join(walked)!r} has no child {name!r}."
            )
        walked.append(name)
        current = child
    return current


def bundle_tree(
    roots: Sequence[Node],
    *,
    config: BundleConfig,
    logger: logging.Logger | None = None,
) -> BundleResult:
    """Bundle an instance forest into a single Lua source.

    :param roots: Model roots, in order.
    :param config: Bundle configuration.
    :param logger: Optional logger for progress output.
    :returns: Generated source and the number of scripts that failed to compile.
    :raises BuildError: If the configured sub-path does not resolve.
    """

    if logger is None:
        logger = logging.getLogger("lua_flattener")

    bundle_roots: Sequence[Node] = roots
    if config.sub_path is not None:
        bundle_roots = [resolve_sub_path(roots, config.sub_path)]
        logger.info(f"lua-flattener: bundling sub-path {'/'.join(config.sub_path)}")

    t0: float = time.perf_counter()
    refs: ReferenceTable = assign_references(bundle_roots)
    logger.info(f"lua-flattener: assigned {len(refs)} references")
    if config.verbose is True and logger.isEnabledFor(logging.DEBUG) is True:
        for ref, node in refs:
            logger.debug(f"lua-flattener: ref {ref} -> {node.class_name} {node.name!r}")

    closure_set: ClosureSet = compile_closures(bundle_roots, refs, logger=logger)
    t1: float = time.perf_counter()
    logger.info(
        f"lua-flattener: compiled {len(closure_set.artifacts)} scripts "
        f"({closure_set.failed_compilations} failed) in {t1 - t0:.2f}s"
    )

    emission: EmissionSet = serialize(
        bundle_roots,
        refs,
        closure_set,
        include_line_offsets=config.include_line_offsets,
        pretty=config.pretty,
        first_closure_line=CLOSURES_FIRST_LINE,
        extra_offset_lines=config.extra_offset_lines,
        logger=logger,
    )

    entry_ref: int | None = find_entry_ref(emission.tree)
    if entry_ref is not None:
        logger.info(f"lua-flattener: bundle returns the result of ref {entry_ref}")

    source: str = render_bundle(
        emission=emission,
        env_name=config.env_name,
        version=config.version,
        entry_ref=entry_ref,
    )
    return BundleResult(
        source=source,
        failed_compilations=closure_set.failed_compilations,
        entry_ref=entry_ref,
    )


def build_bundle_file(
    *,
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    config: BundleConfig,
    logger: logging.Logger | None = None,
) -> BundleResult:
    """Build a single-file bundle from a model file or Rojo project.

    :param input_path: ``.rbxmx`` model or ``*.project.json`` Rojo project.
    :param output_path: Output path for the bundled ``.lua`` file.
    :param config: Bundle configuration.
    :param logger: Optional logger for progress output.
    :returns: The bundle result (also written to ``output_path``).
    :raises BuildError: If bundling fails.
    """

    if logger is None:
        logger = logging.getLogger("lua_flattener")

    if input_path.exists() is False:
        raise BuildError(f"Input path does not exist: {input_path}")
    if input_path.is_file() is False:
        raise BuildError(f"Input path is not a file: {input_path}")

    t_total0: float = time.perf_counter()
    logger.info(f"lua-flattener: input={input_path}")
    logger.info(f"lua-flattener: output={output_path}")
    logger.info(f"lua-flattener: env={config.env_name} minify={config.minify}")

    with tempfile.TemporaryDirectory(prefix="lua_flattener_build_") as td:
        build_root: pathlib.Path = pathlib.Path(td)

        roots: list[Node] = _load_roots(input_path=input_path, build_root=build_root, logger=logger)
        result: BundleResult = bundle_tree(roots, config=config, logger=logger)

        source: str = result.source
        if config.minify is True:
            source = _minify(source=source, build_root=build_root, logger=logger)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(source, encoding="utf-8")

    out_size: int = output_path.stat().st_size
    t_total1: float = time.perf_counter()
    logger.info(f"lua-flattener: wrote {output_path} ({out_size / 1024:.1f} KiB) in {t_total1 - t_total0:.2f}s")
    if result.failed_compilations > 0:
        logger.warning(
            f"lua-flattener: {result.failed_compilations} script(s) failed to compile; "
            "they will raise their diagnostic when run"
        )

    return BundleResult(
        source=source,
        failed_compilations=result.failed_compilations,
        entry_ref=result.entry_ref,
    )


def _load_roots(*, input_path: pathlib.Path, build_root: pathlib.Path, logger: logging.Logger) -> list[Node]:
    """Load the model roots for an input file.

    :param input_path: Model or project file.
    :param build_root: Scratch directory for intermediate files.
    :param logger: Logger for progress output.
    :returns: Model roots.
    :raises BuildError: If the input type is not supported.
    """

    name: str = input_path.name.lower()
    if name.endswith(".rbxmx") is True:
        return load_rbxmx(input_path, logger=logger)

    if name.endswith(".project.json") is True:
        model_path: pathlib.Path = build_root / "model.rbxmx"
        t0: float = time.perf_counter()
        _run_tool(["rojo", "build", str(input_path), "--output", str(model_path)], logger=logger)
        t1: float = time.perf_counter()
        logger.info(f"lua-flattener: built Rojo project in {t1 - t0:.2f}s")
        return load_rbxmx(model_path, logger=logger)

    if name.endswith(".rbxm") is True:
        raise BuildError(f"Binary models are not supported; save {input_path.name} as .rbxmx instead.")

    raise BuildError(f"Unsupported input type (expected .rbxmx or .project.json): {input_path}")


def _minify(*, source: str, build_root: pathlib.Path, logger: logging.Logger) -> str:
    """Minify a bundle with darklua.

    :param source: Bundle source.
    :param build_root: Scratch directory for intermediate files.
    :param logger: Logger for progress output.
    :returns: Minified source.
    :raises BuildError: If darklua fails.
    """

    in_path: pathlib.Path = build_root / "bundle.lua"
    out_path: pathlib.Path = build_root / "bundle.min.lua"
    config_path: pathlib.Path = build_root / "darklua.json"
    in_path.write_text(source, encoding="utf-8")
    config_path.write_text(json.dumps(_DARKLUA_CONFIG, indent=2), encoding="utf-8")

    t0: float = time.perf_counter()
    _run_tool(
        ["darklua", "process", str(in_path), str(out_path), "--config", str(config_path)],
        logger=logger,
    )
    t1: float = time.perf_counter()

    minified: str = out_path.read_text(encoding="utf-8")
    logger.info(
        f"lua-flattener: minified {len(source) / 1024:.1f} KiB -> {len(minified) / 1024:.1f} KiB in {t1 - t0:.2f}s"
    )
    return minified


def _run_tool(cmd: list[str], *, logger: logging.Logger | None) -> None:
    """Invoke an external tool.

    :param cmd: Command line; ``cmd[0]`` must be on ``PATH``.
    :param logger: Optional logger for debug output.
    :raises BuildError: If the tool is missing or fails.
    """

    if shutil.which(cmd[0]) is None:
        raise BuildError(f"{cmd[0]} is not installed or not on PATH.")

    if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"lua-flattener: running {cmd[0]}: {' '.join(cmd)}")

    proc = subprocess.run(cmd, check=False, capture_output=True, text=True)
    if proc.returncode != 0:
        detail: str = proc.stderr.strip()
        message: str = f"{cmd[0]} invocation failed (exit={proc.returncode}): {' '.join(cmd)}"
        if len(detail) > 0:
            message += f"\n{detail}"
        raise BuildError(message)
