"""Command line interface for lua-flattener."""

import argparse
import logging
import pathlib
import sys

from lua_flattener.builder import BundleResult, build_bundle_file
from lua_flattener.config import DEFAULT_ENV_NAME, BundleConfig, ConfigError, resolve_bundle_config
from lua_flattener.errors import BuildError


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the lua-flattener logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("lua_flattener")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def main(argv: list[str] | None = None) -> int:
    """Run the lua-flattener CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="lua-flattener",
        description="Bundle a Roblox model or Rojo project into one self-contained .lua file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Build a single-file .lua bundle.",
    )
    p_build.add_argument(
        "input",
        type=pathlib.Path,
        help="Path to a .rbxmx model or a *.project.json Rojo project.",
    )
    p_build.add_argument(
        "-o",
        "--output",
        type=pathlib.Path,
        required=True,
        help="Output path for the bundled .lua file.",
    )
    p_build.add_argument(
        "--env-name",
        type=str,
        default=DEFAULT_ENV_NAME,
        help=f"Display name of the bundle environment (default: {DEFAULT_ENV_NAME}).",
    )
    p_build.add_argument(
        "--minify",
        action="store_true",
        help="Minify the output with darklua. Disables error line mapping.",
    )
    p_build.add_argument(
        "--sub-path",
        type=str,
        default=None,
        help="Bundle only the instance at this '/'-separated path (e.g. MyProject/src).",
    )
    p_build.add_argument(
        "--extra-offset-lines",
        type=int,
        default=0,
        help="Number of lines you will prepend to the output (keeps error line mapping correct).",
    )
    p_build.add_argument(
        "--ci-mode",
        action="store_true",
        help="Exit with status 1 if any script failed to compile.",
    )
    p_build.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p_build.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )

    ns = parser.parse_args(argv)
    if ns.command == "build":
        logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        try:
            config: BundleConfig = resolve_bundle_config(
                env_name=ns.env_name,
                minify=ns.minify,
                extra_offset_lines=ns.extra_offset_lines,
                sub_path=ns.sub_path,
                verbose=ns.verbose >= 2,
            )
            result: BundleResult = build_bundle_file(
                input_path=ns.input,
                output_path=ns.output,
                config=config,
                logger=logger,
            )
        except (ConfigError, BuildError) as e:
            logger.error(f"lua-flattener: error: {e}")
            return 2

        if result.failed_compilations > 0 and ns.ci_mode is True:
            logger.error(f"lua-flattener: {result.failed_compilations} script(s) failed to compile (--ci-mode)")
            return 1
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
