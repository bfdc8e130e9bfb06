"""Shared fixtures for the lua-flattener test suite."""

import logging
from collections.abc import Iterator

import pytest


@pytest.fixture(autouse=True)
def reset_package_logger() -> Iterator[None]:
    """Undo handler/propagation changes made by the CLI so ``caplog`` sees records."""

    logger: logging.Logger = logging.getLogger("lua_flattener")
    yield
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("lua_flattener")
