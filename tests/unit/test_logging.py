"""Tests for utils/logging.py."""

from __future__ import annotations

import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from reconpilot.utils.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    package_level = logging.getLogger("reconpilot").level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("reconpilot").setLevel(package_level)


def test_quiet_by_default():
    configure_logging(console=Console(stderr=True))
    logger = logging.getLogger("reconpilot")
    assert logger.getEffectiveLevel() == logging.WARNING
    assert not logger.isEnabledFor(logging.INFO)
    assert isinstance(logging.getLogger().handlers[0], RichHandler)


def test_verbose_enables_debug():
    configure_logging(verbose=True, console=Console(stderr=True))
    assert logging.getLogger("reconpilot.core.queue").isEnabledFor(logging.DEBUG)
    assert logging.getLogger("httpx").getEffectiveLevel() == logging.WARNING
