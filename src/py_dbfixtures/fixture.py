import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from testcontainers.core.waiting_utils import WaitStrategy

from .config import get_config, merge, service_config
from .errors import (
    EndpointQueryError,
    FixtureError,
    FixtureStateError,
    InvalidSpecError,
    RuntimeLaunchError,
)
from .runtime import ContainerRuntime, LaunchSpec, TestcontainersRuntime, readiness_strategy
from .scripts import NO_SCRIPTS, InitScripts, Resolution, remove_files, resolve

logger = logging.getLogger(__name__)


class FixtureState(enum.Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    TORN_DOWN = "torn_down"


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int


@dataclass
class ContainerRequest:
    """
    What the caller wants from a fixture's container.

    Empty fields fall back to the service defaults from configuration.
    `env` and `bind_mounts` are merged on top of the defaults.
    """
    image: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    bind_mounts: Dict[str, str] = field(default_factory=dict)
    init_scripts: InitScripts = NO_SCRIPTS
    waiting_for: Optional[WaitStrategy] = None


class ContainerFixture:
    """
    A disposable service container for tests.

    Subclasses set `service` to the name of their `[services.<name>]`
    configuration section and may override `_default_readiness`,
    `_on_started` and `_on_teardown`.

    Typical use::

        with PostgresFixture() as pg:
            ...

    or, keeping the container across a test session::

        pg = PostgresFixture.create(ContainerRequest(...))
        ...
        pg.teardown()
    """

    service: str = ""

    def __init__(
        self,
        request: Optional[ContainerRequest] = None,
        runtime: Optional[ContainerRuntime] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.request = request or ContainerRequest()
        self.config = config if config is not None else get_config()
        self.service_config = service_config(self.service, self.config)
        self.runtime = runtime if runtime is not None else self._default_runtime()

        self.state = FixtureState.UNSTARTED
        self.env: Dict[str, str] = {}
        self.bind_mounts: Dict[str, str] = {}
        self._handle = None
        self._endpoint: Optional[Endpoint] = None
        self._temp_files: List[str] = []
        self._lock = threading.Lock()

    @classmethod
    def create(cls, request: Optional[ContainerRequest] = None, **kwargs) -> "ContainerFixture":
        """
        Builds and starts a fixture in one call.

        :raises FixtureError: If the container could not be brought up. Nothing
            is left running and no temporary file is left behind.
        """
        fixture = cls(request, **kwargs)
        fixture.start()
        return fixture

    @property
    def image(self) -> str:
        return self.request.image or self.service_config["image"]

    @property
    def port(self) -> int:
        """The service port inside the container."""
        return int(self.service_config["port"])

    @property
    def init_dir(self) -> str:
        return self.service_config.get("init_dir", "")

    @property
    def temp_files(self) -> List[str]:
        with self._lock:
            return list(self._temp_files)

    def start(self) -> "ContainerFixture":
        if self.state is not FixtureState.UNSTARTED:
            raise FixtureStateError(f"Cannot start a {self.service} fixture in state '{self.state.value}'")
        self.state = FixtureState.STARTING
        logger.info(f"Starting {self.service} fixture...")

        try:
            resolution = self._resolve(self.request.init_scripts)
            self.track_temp_files(resolution.temp_files)

            self.env = merge(self.service_config.get("env"), self.request.env)
            self.bind_mounts = merge(resolution.mounts, self.request.bind_mounts)

            spec = LaunchSpec(
                image=self.image,
                port=self.port,
                env=self.env,
                bind_mounts=self.bind_mounts,
                waiting_for=self.request.waiting_for or self._default_readiness(),
            )
            self._handle = self._launch(spec)
            self._endpoint = self._query_endpoint()
            self._on_started()
        except BaseException as e:
            # KeyboardInterrupt rolls back too.
            logger.error(f"Failed to start {self.service} fixture, rolling back: {e!r}")
            self.state = FixtureState.FAILED
            try:
                self._release()
            except Exception as cleanup_error:
                logger.error(f"Rollback of the {self.service} fixture was incomplete: {cleanup_error}")
            raise

        self.state = FixtureState.RUNNING
        logger.info(f"{self.service} fixture is running at {self._endpoint.host}:{self._endpoint.port}")
        return self

    def endpoint(self) -> Endpoint:
        if self.state is not FixtureState.RUNNING:
            raise FixtureStateError(
                f"The {self.service} fixture has no endpoint in state '{self.state.value}'"
            )
        return self._endpoint

    def teardown(self) -> None:
        """
        Removes tracked temporary files and stops the container.

        Calling it again, or after a failed start, does nothing.
        """
        if self.state in (FixtureState.TORN_DOWN, FixtureState.FAILED, FixtureState.UNSTARTED):
            logger.debug(f"Nothing to tear down for {self.service} fixture in state '{self.state.value}'")
            return
        logger.info(f"Tearing down {self.service} fixture...")
        self.state = FixtureState.TORN_DOWN
        self._release()

    def track_temp_files(self, paths: Iterable[str]) -> None:
        """Takes ownership of files that must be removed at teardown."""
        paths = list(paths)
        if not paths:
            return
        with self._lock:
            self._temp_files.extend(paths)

    def _resolve(self, init_scripts: InitScripts) -> Resolution:
        if init_scripts and not self.init_dir:
            raise InvalidSpecError(f"The {self.service} fixture does not support init scripts")
        return resolve(
            init_scripts,
            self.init_dir,
            temp_prefix=self.config.get("tempfiles", {}).get("prefix", ""),
        )

    def _launch(self, spec: LaunchSpec) -> Any:
        try:
            return self.runtime.launch(spec)
        except RuntimeLaunchError:
            raise
        except Exception as e:
            raise RuntimeLaunchError(f"Could not launch the {self.service} container: {e}") from e

    def _query_endpoint(self) -> Endpoint:
        try:
            host = self.runtime.host(self._handle)
            port = self.runtime.mapped_port(self._handle, self.port)
        except Exception as e:
            raise EndpointQueryError(
                f"Could not read the endpoint of the {self.service} container: {e}"
            ) from e
        return Endpoint(host=host, port=int(port))

    def _release(self) -> None:
        with self._lock:
            temp_files, self._temp_files = self._temp_files, []
        remove_files(temp_files)

        handle, self._handle = self._handle, None
        try:
            self._on_teardown()
        finally:
            if handle is not None:
                try:
                    self.runtime.terminate(handle)
                except Exception as e:
                    logger.error(f"Failed to stop the {self.service} container: {e}")
                    raise FixtureError(f"Could not stop the {self.service} container: {e}") from e

    def _default_runtime(self) -> ContainerRuntime:
        return TestcontainersRuntime()

    def _default_readiness(self) -> WaitStrategy:
        """
        Waits for the service port, preceded by a log message when the
        service configuration has a `readiness.log_message`.
        """
        return readiness_strategy(self.port, self.service_config.get("readiness"))

    def _on_started(self) -> None:
        """Called once the endpoint is known, before the fixture is running."""

    def _on_teardown(self) -> None:
        """Called on teardown and on rollback of a failed start."""

    def __enter__(self):
        if self.state is FixtureState.UNSTARTED:
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.teardown()

    def __repr__(self):
        return f"{type(self).__name__}(image={self.image!r}, state={self.state.value})"
