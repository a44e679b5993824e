import logging
import os
import posixpath
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import InvalidSpecError, ResolutionIOError

logger = logging.getLogger(__name__)

INLINE_SCRIPT_NAME = "init.sql"


class InitScripts:
    """
    Base class for the ways init scripts can be supplied to a fixture.

    Exactly one variant is ever in play: `Inline`, `FromFiles`, `FromDir`
    or `NoScripts`. Use `from_fields` to build one from the three optional
    fields a caller may have populated.
    """

    @staticmethod
    def from_fields(
        inline: Optional[str] = None,
        from_files: Optional[Sequence[str]] = None,
        from_dir: Optional[str] = None,
    ) -> "InitScripts":
        """
        Picks the first populated field: `inline`, then `from_files`,
        then `from_dir`. The fields that lose are logged as ignored.
        """
        populated = [
            name for name, value in (
                ("inline", inline), ("from_files", from_files), ("from_dir", from_dir)
            ) if value
        ]
        if len(populated) > 1:
            logger.warning(
                f"Several init script sources were given; using '{populated[0]}' "
                f"and ignoring: {', '.join(populated[1:])}"
            )

        if inline:
            return Inline(inline)
        if from_files:
            return FromFiles(tuple(from_files))
        if from_dir:
            return FromDir(from_dir)
        return NO_SCRIPTS

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class NoScripts(InitScripts):
    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class Inline(InitScripts):
    text: str

    def __bool__(self) -> bool:
        return bool(self.text)


@dataclass(frozen=True)
class FromFiles(InitScripts):
    paths: Tuple[str, ...]

    def __post_init__(self):
        # Accept any sequence, store an immutable one.
        object.__setattr__(self, "paths", tuple(str(p) for p in self.paths))

    def __bool__(self) -> bool:
        return bool(self.paths)


@dataclass(frozen=True)
class FromDir(InitScripts):
    path: str

    def __post_init__(self):
        object.__setattr__(self, "path", str(self.path))

    def __bool__(self) -> bool:
        return bool(self.path)


NO_SCRIPTS = NoScripts()


@dataclass(frozen=True)
class Resolution:
    """
    Outcome of resolving init scripts.

    `mounts` maps host paths to container paths. `temp_files` lists files
    created during resolution; whoever receives the resolution owns them
    and must remove them.
    """
    mounts: Dict[str, str] = field(default_factory=dict)
    temp_files: Tuple[str, ...] = ()


def resolve(
    spec: InitScripts,
    init_dir: str,
    temp_prefix: str = "",
) -> Resolution:
    """
    Maps an init-script specification onto the container's init directory.

    :param spec: One of the `InitScripts` variants.
    :param init_dir: The directory inside the container whose scripts run at startup.
    :param temp_prefix: Prefix for the temporary file created for inline scripts.
    :return: The mounts to add to the container and any temp files created.
    :raises InvalidSpecError: If a file or directory path is not absolute.
    :raises ResolutionIOError: If the inline script cannot be written.
    """
    if isinstance(spec, Inline) and spec:
        filename = _create_temp_file_with_content(spec.text, temp_prefix)
        return Resolution(
            mounts={filename: posixpath.join(init_dir, INLINE_SCRIPT_NAME)},
            temp_files=(filename,),
        )

    if isinstance(spec, FromFiles) and spec:
        mounts = {}
        for path in spec.paths:
            _require_absolute(path)
            mounts[path] = posixpath.join(init_dir, os.path.basename(path))
        return Resolution(mounts=mounts)

    if isinstance(spec, FromDir) and spec:
        _require_absolute(spec.path)
        return Resolution(mounts={spec.path: init_dir})

    if not isinstance(spec, InitScripts):
        raise InvalidSpecError(f"Unsupported init script specification: {spec!r}")

    return Resolution()


def script_files(resolution: Resolution) -> List[str]:
    """
    Lists the host files whose contents should be executed, ordered by
    their path inside the container. A mounted directory contributes its
    `*.sql` files sorted by name.
    """
    files = []
    for host_path, container_path in sorted(resolution.mounts.items(), key=lambda item: item[1]):
        if os.path.isdir(host_path):
            files.extend(str(p) for p in sorted(Path(host_path).glob("*.sql")))
        else:
            files.append(host_path)
    return files


def remove_files(paths: Iterable[str]) -> None:
    """Removes each file, ignoring ones that are already gone."""
    for path in paths:
        try:
            os.remove(path)
            logger.debug(f"Removed temporary file {path}")
        except FileNotFoundError:
            pass


def _require_absolute(path: Union[str, os.PathLike]) -> None:
    if not os.path.isabs(path):
        raise InvalidSpecError(f"Init script path should be absolute but got '{path}'")


def _create_temp_file_with_content(content: str, prefix: str) -> str:
    try:
        fd, filename = tempfile.mkstemp(prefix=prefix, suffix=INLINE_SCRIPT_NAME)
    except OSError as e:
        logger.error(f"Failed to create a temporary file for an inline script: {e}")
        raise ResolutionIOError(f"Could not create a temporary file for the inline script: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        # The container runs its init scripts as an unprivileged user.
        os.chmod(filename, 0o644)
    except OSError as e:
        logger.error(f"Failed to write inline script to {filename}: {e}")
        remove_files([filename])
        raise ResolutionIOError(f"Could not write the inline script to '{filename}': {e}") from e

    logger.debug(f"Wrote inline init script to {filename}")
    return filename
