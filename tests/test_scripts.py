import os
import stat
from pathlib import Path

import pytest

from py_dbfixtures.errors import InvalidSpecError, ResolutionIOError
from py_dbfixtures.scripts import (
    NO_SCRIPTS,
    FromDir,
    FromFiles,
    InitScripts,
    Inline,
    Resolution,
    remove_files,
    resolve,
    script_files,
)

INIT_DIR = "/docker-entrypoint-initdb.d"
MIGRATIONS = Path(__file__).parent / "resources" / "migrations"


@pytest.fixture
def cleanup():
    """Collects temp files created by a test and removes them afterwards."""
    created = []
    yield created
    remove_files(created)


def test_resolve_inline_writes_temp_file(cleanup):
    resolution = resolve(Inline("CREATE TABLE t(id int);"), INIT_DIR, temp_prefix="dbfixtures-")
    cleanup.extend(resolution.temp_files)

    assert len(resolution.temp_files) == 1
    temp_file = resolution.temp_files[0]
    assert resolution.mounts == {temp_file: "/docker-entrypoint-initdb.d/init.sql"}
    assert os.path.basename(temp_file).startswith("dbfixtures-")
    assert Path(temp_file).read_text() == "CREATE TABLE t(id int);"


def test_resolve_inline_temp_file_is_world_readable(cleanup):
    resolution = resolve(Inline("select 1;"), INIT_DIR)
    cleanup.extend(resolution.temp_files)

    mode = os.stat(resolution.temp_files[0]).st_mode
    assert mode & stat.S_IROTH


def test_resolve_same_inline_text_twice_gives_distinct_files(cleanup):
    first = resolve(Inline("select 1;"), INIT_DIR)
    second = resolve(Inline("select 1;"), INIT_DIR)
    cleanup.extend(first.temp_files + second.temp_files)

    assert first.temp_files[0] != second.temp_files[0]


def test_resolve_from_files():
    files = ["/srv/sql/001_schema.sql", "/srv/sql/002_data.sql"]

    resolution = resolve(FromFiles(files), INIT_DIR)

    assert resolution.mounts == {
        "/srv/sql/001_schema.sql": "/docker-entrypoint-initdb.d/001_schema.sql",
        "/srv/sql/002_data.sql": "/docker-entrypoint-initdb.d/002_data.sql",
    }
    assert resolution.temp_files == ()


def test_resolve_from_dir():
    resolution = resolve(FromDir("/srv/sql"), INIT_DIR)

    assert resolution.mounts == {"/srv/sql": INIT_DIR}
    assert resolution.temp_files == ()


@pytest.mark.parametrize("spec", [
    NO_SCRIPTS,
    Inline(""),
    FromFiles([]),
    FromDir(""),
])
def test_resolve_empty_spec(spec, tmp_path, monkeypatch):
    monkeypatch.setattr("tempfile.tempdir", str(tmp_path))

    resolution = resolve(spec, INIT_DIR)

    assert resolution == Resolution()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize("spec", [
    FromFiles(["./rel/path"]),
    FromFiles(["/abs/ok.sql", "rel.sql"]),
    FromDir("relative/dir"),
])
def test_resolve_relative_paths_fail(spec, tmp_path, monkeypatch):
    """Relative paths are rejected before anything is written to disk."""
    monkeypatch.setattr("tempfile.tempdir", str(tmp_path))

    with pytest.raises(InvalidSpecError, match="should be absolute"):
        resolve(spec, INIT_DIR)
    assert list(tmp_path.iterdir()) == []


def test_resolve_rejects_unknown_spec():
    with pytest.raises(InvalidSpecError):
        resolve({"inline": "select 1"}, INIT_DIR)


def test_resolve_inline_write_failure(mocker):
    mocker.patch("py_dbfixtures.scripts.tempfile.mkstemp", side_effect=PermissionError("denied"))

    with pytest.raises(ResolutionIOError, match="denied"):
        resolve(Inline("select 1;"), INIT_DIR)


def test_from_fields_first_match_policy(caplog):
    """inline wins over from_files, which wins over from_dir."""
    spec = InitScripts.from_fields(inline="select 1;", from_files=["/a.sql"], from_dir="/sql")
    assert spec == Inline("select 1;")
    assert "using 'inline' and ignoring: from_files, from_dir" in caplog.text

    spec = InitScripts.from_fields(from_files=["/a.sql"], from_dir="/sql")
    assert spec == FromFiles(("/a.sql",))

    assert InitScripts.from_fields(from_dir="/sql") == FromDir("/sql")
    assert InitScripts.from_fields() is NO_SCRIPTS
    assert InitScripts.from_fields(inline="", from_files=[]) is NO_SCRIPTS


def test_from_fields_single_field_does_not_warn(caplog):
    InitScripts.from_fields(from_dir="/sql")
    assert "ignoring" not in caplog.text


def test_script_files_orders_by_container_path():
    resolution = Resolution(mounts={
        "/b/zz.sql": "/docker-entrypoint-initdb.d/zz.sql",
        "/a/aa.sql": "/docker-entrypoint-initdb.d/aa.sql",
    })
    assert script_files(resolution) == ["/a/aa.sql", "/b/zz.sql"]


def test_script_files_expands_directories():
    directory = str(MIGRATIONS / "dir")
    resolution = resolve(FromDir(directory), INIT_DIR)

    assert script_files(resolution) == [
        str(MIGRATIONS / "dir" / "01_users.sql"),
        str(MIGRATIONS / "dir" / "02_seed.sql"),
    ]


def test_remove_files_tolerates_missing(tmp_path):
    existing = tmp_path / "init.sql"
    existing.write_text("select 1;")

    remove_files([str(existing), str(tmp_path / "missing.sql")])
    remove_files([str(existing)])

    assert not existing.exists()
