import logging
from importlib.metadata import entry_points
from typing import Dict, Type

from ..fixture import ContainerFixture

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "py_dbfixtures.services"


def available_services() -> Dict[str, object]:
    """Returns the registered service entry points by name."""
    try:
        # Python 3.10+
        eps = entry_points(group=ENTRY_POINT_GROUP)
    except TypeError:
        eps = entry_points().get(ENTRY_POINT_GROUP, [])
    return {ep.name: ep for ep in eps}


def get_fixture_class(service_name: str) -> Type[ContainerFixture]:
    """
    Finds a fixture class using entry points.

    This function looks for installed packages that provide an entry point
    in the 'py_dbfixtures.services' group.

    :param service_name: The name of the service (e.g., 'postgres').
    :return: The fixture class registered under that name.
    :raises ValueError: If the requested service is not found.
    :raises ImportError: If the registered class cannot be loaded.
    """
    logger.debug(f"Looking up fixture for service '{service_name}'")
    discovered = available_services()

    if service_name not in discovered:
        logger.error(f"Service '{service_name}' not found. Available services: {sorted(discovered)}")
        raise ValueError(f"Unsupported service: {service_name}")

    entry_point = discovered[service_name]
    try:
        return entry_point.load()
    except Exception as e:
        logger.error(f"Failed to load class for service '{service_name}': {e}", exc_info=True)
        raise ImportError(f"Could not load the fixture class for the '{service_name}' service.") from e
