"""Shared fixtures and logging setup for the pywebchannel tests."""

import logging
import sys

import pytest

from .fixtures.fake_host import FakeHost


def pytest_configure(config):
    log_level = logging.DEBUG if config.getoption("--debug-pywebchannel") else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("pywebchannel").setLevel(log_level)


def pytest_addoption(parser):
    parser.addoption(
        "--debug-pywebchannel",
        action="store_true",
        default=False,
        help="Enable debug logging for pywebchannel (logs every message on the wire)",
    )


@pytest.fixture
def host():
    """A scripted web channel host with no channel attached yet."""
    return FakeHost()


@pytest.fixture
def channel(host):
    """A channel that has completed the Init handshake against ``backend_descriptor()``."""
    return host.connect()
