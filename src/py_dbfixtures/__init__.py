"""Disposable Postgres and etcd containers for integration tests."""

from .config import get_config, load_config, merge
from .dsn import build_dsn
from .errors import (
    EndpointQueryError,
    FixtureError,
    FixtureStateError,
    InvalidSpecError,
    ProvisionError,
    ResolutionIOError,
    RuntimeLaunchError,
)
from .fixture import ContainerFixture, ContainerRequest, Endpoint, FixtureState
from .scripts import NO_SCRIPTS, FromDir, FromFiles, InitScripts, Inline, resolve
from .services.etcd import EtcdFixture
from .services.postgres import PostgresFixture

__all__ = [
    "ContainerFixture",
    "ContainerRequest",
    "Endpoint",
    "EndpointQueryError",
    "EtcdFixture",
    "FixtureError",
    "FixtureState",
    "FixtureStateError",
    "FromDir",
    "FromFiles",
    "InitScripts",
    "Inline",
    "InvalidSpecError",
    "NO_SCRIPTS",
    "PostgresFixture",
    "ProvisionError",
    "ResolutionIOError",
    "RuntimeLaunchError",
    "build_dsn",
    "get_config",
    "load_config",
    "merge",
    "resolve",
]
