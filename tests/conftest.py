import pytest
import docker
from docker.errors import DockerException

from py_dbfixtures.config import load_config
from py_dbfixtures.runtime import ContainerRuntime


class FakeRuntime(ContainerRuntime):
    """
    An in-memory container runtime that records what it was asked to do.
    Any step can be made to fail by setting the matching `fail_*` attribute
    to an exception.
    """

    def __init__(self, host="localhost", port=54321):
        self.host_name = host
        self.port = port
        self.launched = []
        self.terminated = []
        self.fail_launch = None
        self.fail_host = None
        self.fail_port = None
        self.fail_terminate = None

    def launch(self, spec):
        if self.fail_launch:
            raise self.fail_launch
        handle = f"container-{len(self.launched)}"
        self.launched.append((handle, spec))
        return handle

    def host(self, handle):
        if self.fail_host:
            raise self.fail_host
        return self.host_name

    def mapped_port(self, handle, port):
        if self.fail_port:
            raise self.fail_port
        return self.port

    def terminate(self, handle):
        if self.fail_terminate:
            raise self.fail_terminate
        self.terminated.append(handle)

    @property
    def last_spec(self):
        return self.launched[-1][1]


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def config():
    """A fresh copy of the default configuration."""
    return load_config()


def _docker_available() -> bool:
    try:
        client = docker.from_env()
        client.ping()
        client.close()
        return True
    except (DockerException, OSError):
        return False


def pytest_collection_modifyitems(config, items):
    """Skips integration tests when no Docker daemon is reachable."""
    integration = [item for item in items if item.get_closest_marker("integration")]
    if not integration or _docker_available():
        return
    skip = pytest.mark.skip(reason="Docker daemon not reachable. Skipping integration tests.")
    for item in integration:
        item.add_marker(skip)
