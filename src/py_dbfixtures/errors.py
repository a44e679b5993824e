"""Errors raised by py-dbfixtures."""


class FixtureError(RuntimeError):
    """Base class for every error raised while setting up a fixture."""


class InvalidSpecError(FixtureError):
    """An init-script specification is malformed, e.g. a relative path."""


class ResolutionIOError(FixtureError):
    """An inline init script could not be written to a temporary file."""


class RuntimeLaunchError(FixtureError):
    """The container failed to start or never became ready."""


class EndpointQueryError(FixtureError):
    """The host or mapped port of a started container could not be read."""


class ProvisionError(FixtureError):
    """Creating a database or running its init scripts failed."""


class FixtureStateError(FixtureError):
    """An operation was called in the wrong lifecycle state."""
