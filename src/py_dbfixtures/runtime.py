import abc
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from docker.errors import APIError
from testcontainers.core.container import DockerContainer
from testcontainers.core.wait_strategies import (
    CompositeWaitStrategy,
    LogMessageWaitStrategy,
    PortWaitStrategy,
)
from testcontainers.core.waiting_utils import WaitStrategy

from .errors import RuntimeLaunchError

logger = logging.getLogger(__name__)

# Exit codes a shell reports when it cannot find or run the command.
_NO_SHELL_EXIT_CODES = (126, 127)


class ListeningPortWaitStrategy(PortWaitStrategy):
    """
    Waits until a container port accepts TCP connections.

    The mapped port is only probed from the host once the port is in LISTEN
    state inside the container, since the Docker proxy accepts host
    connections before the service is listening. Images without a shell
    skip the inner check.
    """

    def __init__(self, port: int):
        super().__init__(int(port))
        self.port = int(port)

    def __repr__(self):
        return f"ListeningPortWaitStrategy(port={self.port})"

    def wait_until_ready(self, container: DockerContainer) -> None:
        logger.info(f"Waiting for port {self.port} to accept connections...")
        if not self._poll(lambda: self._listening_inside(container)):
            raise TimeoutError(
                f"Port {self.port} was not listening inside the container within {self._startup_timeout} seconds"
            )
        super().wait_until_ready(container)

    def _listening_inside(self, container: DockerContainer) -> bool:
        command = (
            "cat /proc/net/tcp /proc/net/tcp6 2>/dev/null "
            f"| awk '{{print $2, $4}}' | grep -qi ':{self.port:04X} 0A'"
        )
        try:
            result = container.exec(["/bin/sh", "-c", command])
        except APIError as e:
            logger.debug(f"Cannot inspect ports inside the container, relying on the host probe: {e}")
            return True
        if result.exit_code in _NO_SHELL_EXIT_CODES:
            logger.debug("No shell in the container, relying on the host probe.")
            return True
        return result.exit_code == 0


def log_message_strategy(message: str, occurrences: int = 1) -> LogMessageWaitStrategy:
    """
    Waits until `message` shows up in the container log `occurrences` times.
    """
    pattern = re.compile("(?:.*?%s){%d}" % (re.escape(message), max(int(occurrences), 1)), re.DOTALL)
    return LogMessageWaitStrategy(pattern)


def readiness_strategy(port: int, readiness: Optional[Dict[str, Any]] = None) -> WaitStrategy:
    """
    Builds the wait strategy for a service from its `readiness` configuration.

    The service port is always waited on. When `log_message` is set, the log
    message is waited on first.
    """
    readiness = readiness or {}
    strategy: WaitStrategy = ListeningPortWaitStrategy(port)
    if readiness.get("log_message"):
        strategy = CompositeWaitStrategy(
            log_message_strategy(readiness["log_message"], readiness.get("occurrences", 1)),
            strategy,
        )
    if readiness.get("timeout"):
        strategy.with_startup_timeout(readiness["timeout"])
    return strategy


@dataclass
class LaunchSpec:
    """Everything the runtime needs to start one container."""
    image: str
    port: int
    env: Dict[str, str] = field(default_factory=dict)
    bind_mounts: Dict[str, str] = field(default_factory=dict)
    waiting_for: Optional[WaitStrategy] = None


class ContainerRuntime(abc.ABC):
    """
    Abstract interface to whatever actually runs containers.

    Fixtures only talk to this interface, so their logic can be exercised
    with an in-memory implementation.
    """

    @abc.abstractmethod
    def launch(self, spec: LaunchSpec) -> Any:
        """
        Start a container and wait until it is ready.

        :param spec: Image, port, environment, mounts and readiness strategy.
        :return: An opaque handle for the running container.
        :raises RuntimeLaunchError: If the container fails to start or become ready.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def host(self, handle: Any) -> str:
        """
        Return the host on which the container's ports are reachable.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def mapped_port(self, handle: Any, port: int) -> int:
        """
        Return the host port mapped to a container port.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def terminate(self, handle: Any) -> None:
        """
        Stop and remove the container.
        """
        raise NotImplementedError


class TestcontainersRuntime(ContainerRuntime):
    """
    Runs containers through testcontainers and the local Docker daemon.
    """

    # Keep pytest from collecting this class.
    __test__ = False
    def launch(self, spec: LaunchSpec) -> DockerContainer:
        container = DockerContainer(spec.image)
        container.with_exposed_ports(spec.port)
        for key, value in spec.env.items():
            container.with_env(key, str(value))
        for host_path, container_path in spec.bind_mounts.items():
            container.with_volume_mapping(host_path, container_path, mode="rw")
        if spec.waiting_for is not None:
            container.waiting_for(spec.waiting_for)

        logger.info(f"Starting container from image '{spec.image}' exposing port {spec.port}...")
        try:
            # Blocks until the wait strategy is satisfied.
            container.start()
        except Exception as e:
            logger.error(f"Container from image '{spec.image}' failed to start: {e}")
            self._stop_after_failure(container)
            raise RuntimeLaunchError(
                f"Container from image '{spec.image}' did not become ready ({spec.waiting_for!r}): {e}"
            ) from e
        except BaseException:
            self._stop_after_failure(container)
            raise

        logger.info(f"Container from image '{spec.image}' is ready.")
        return container

    def host(self, handle: DockerContainer) -> str:
        return handle.get_container_host_ip()

    def mapped_port(self, handle: DockerContainer, port: int) -> int:
        return int(handle.get_exposed_port(port))

    def terminate(self, handle: DockerContainer) -> None:
        logger.info("Stopping container...")
        handle.stop()

    @staticmethod
    def _stop_after_failure(container: DockerContainer) -> None:
        # stop() does nothing for a container that was never created.
        try:
            container.stop()
        except Exception as e:
            # The launch error is what the caller needs to see.
            logger.warning(f"Could not stop the container after a failed launch: {e}")
