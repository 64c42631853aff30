from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from rich.logging import RichHandler

from toolgate.core.console import NOISY_LOGGERS, get_logger, setup_logging


@pytest.fixture
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    levels = {name: logging.getLogger(name).level for name in ("toolgate", *NOISY_LOGGERS)}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, saved in levels.items():
        logging.getLogger(name).setLevel(saved)


@pytest.mark.usefixtures("restore_logging")
class TestSetupLogging:
    def test_single_rich_handler_on_root(self) -> None:
        setup_logging("INFO")
        setup_logging("INFO")
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], RichHandler)
        assert handlers[0].markup is False

    @pytest.mark.parametrize(
        ("level", "expected"),
        [("debug", logging.DEBUG), (" warning ", logging.WARNING), ("chatty", logging.INFO), (40, 40)],
    )
    def test_level_names(self, level: str | int, expected: int) -> None:
        assert setup_logging(level).level == expected

    def test_verbose_forces_debug(self) -> None:
        assert setup_logging("ERROR", verbose=True).level == logging.DEBUG

    def test_client_loggers_held_at_warning(self) -> None:
        setup_logging("DEBUG")
        assert all(logging.getLogger(name).level == logging.WARNING for name in NOISY_LOGGERS)

    def test_client_loggers_follow_verbose(self) -> None:
        setup_logging(verbose=True)
        assert logging.getLogger("httpx").level == logging.DEBUG


def test_get_logger_defaults_to_app_namespace() -> None:
    assert get_logger().name == "toolgate"
    assert get_logger("toolgate.cache").parent is get_logger()
