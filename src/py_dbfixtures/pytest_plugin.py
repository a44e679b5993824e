"""
pytest plugin exposing the fixtures as pytest fixtures.

Registered through the `pytest11` entry point, so installing the package is
enough::

    def test_users(postgres_database):
        with psycopg.connect(postgres_database) as conn:
            ...
"""
import logging
import re

import pytest

from .config import load_config
from .logging_utils import setup_logging
from .services.etcd import EtcdFixture
from .services.postgres import PostgresFixture

# Postgres truncates identifiers to 63 bytes; the timestamp suffix takes 20.
MAX_PREFIX_LENGTH = 40


def pytest_addoption(parser):
    group = parser.getgroup("dbfixtures")
    group.addoption(
        "--dbfixtures-config",
        dest="dbfixtures_config",
        default=None,
        help="Path to a TOML file overriding the default fixture configuration.",
    )
    group.addoption(
        "--dbfixtures-json-logs",
        dest="dbfixtures_json_logs",
        action="store_true",
        default=False,
        help="Output fixture logs in JSON format.",
    )


def database_prefix(test_name: str) -> str:
    """Turns a test name into a valid, lower-case database name prefix."""
    prefix = re.sub(r"\W+", "_", test_name).strip("_").lower()
    return prefix[:MAX_PREFIX_LENGTH] or "test"


@pytest.fixture(scope="session")
def dbfixtures_config(request):
    """The fixture configuration, with the file from --dbfixtures-config applied."""
    config = load_config(request.config.getoption("dbfixtures_config"))
    logging_config = config.get("logging", {})
    if request.config.getoption("dbfixtures_json_logs") or logging_config.get("json_format"):
        setup_logging(level=logging_config.get("level", logging.INFO), json_format=True)
    return config


@pytest.fixture(scope="session")
def postgres_fixture(dbfixtures_config):
    """
    A PostgreSQL container shared by the whole test session.
    """
    with PostgresFixture(config=dbfixtures_config) as postgres:
        yield postgres


@pytest.fixture(scope="session")
def etcd_fixture(dbfixtures_config):
    """
    An etcd container shared by the whole test session.
    """
    with EtcdFixture(config=dbfixtures_config) as etcd:
        yield etcd


@pytest.fixture
def postgres_database(postgres_fixture, request):
    """
    The connection string of a fresh, empty database created for this test
    on the session's PostgreSQL container.
    """
    return postgres_fixture.create_database(database_prefix(request.node.name))
