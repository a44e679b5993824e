import logging
import time
from typing import Optional

import psycopg
from psycopg import sql

from ..dsn import build_dsn, mask_password
from ..errors import FixtureStateError, ProvisionError
from ..fixture import ContainerFixture, Endpoint, FixtureState
from ..scripts import NO_SCRIPTS, InitScripts, script_files

logger = logging.getLogger(__name__)

ENV_DB = "POSTGRES_DB"
ENV_USER = "POSTGRES_USER"
ENV_PASSWORD = "POSTGRES_PASSWORD"

DEFAULT_USER = "postgres"


class PostgresFixture(ContainerFixture):
    """
    A disposable PostgreSQL server.

    Besides the primary database named by `POSTGRES_DB`, any number of
    databases can be created on the running server with `create_database`,
    each seeded by its own init scripts. This lets a test session share one
    container while every test gets an isolated database.
    """

    service = "postgres"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.main_conn: Optional[psycopg.Connection] = None

    @property
    def user(self) -> str:
        return self.env.get(ENV_USER) or DEFAULT_USER

    @property
    def password(self) -> str:
        return self.env.get(ENV_PASSWORD, "")

    @property
    def database(self) -> str:
        return self.env.get(ENV_DB) or self.user

    def dsn(self) -> str:
        """Connection string of the primary database."""
        return self.dsn_for(self.database)

    def dsn_for(self, database: str) -> str:
        return self._format_dsn(self.endpoint(), database)

    def _format_dsn(self, endpoint: Endpoint, database: str) -> str:
        return build_dsn(self.user, self.password, endpoint.host, endpoint.port, database)

    def connect(self, database: Optional[str] = None, **kwargs) -> psycopg.Connection:
        """Opens a new connection to the primary or the named database."""
        return psycopg.connect(self.dsn_for(database or self.database), **kwargs)

    def create_database(self, prefix: str, init_scripts: InitScripts = NO_SCRIPTS) -> str:
        """
        Creates a new database on the running server and runs init scripts in it.

        The database is named `{prefix}_{nanosecond timestamp}`. Each script file
        is executed as a single batch, in the order the container's init
        directory would run them. On failure the database is left in place.

        :param prefix: Prefix of the database name.
        :param init_scripts: Scripts to run in the new database.
        :return: The connection string of the new database.
        :raises InvalidSpecError: If the init scripts are malformed.
        :raises ProvisionError: If the database cannot be created or a script fails.
        """
        if self.state is not FixtureState.RUNNING:
            raise FixtureStateError(f"Cannot create a database while the fixture is '{self.state.value}'")

        name = f"{prefix}_{time.time_ns()}"

        resolution = self._resolve(init_scripts)
        self.track_temp_files(resolution.temp_files)

        logger.info(f"Creating database '{name}'...")
        try:
            self.main_conn.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(name)))
        except psycopg.Error as e:
            logger.error(f"Failed to create database '{name}': {e}")
            raise ProvisionError(f"Could not create database '{name}': {e}") from e

        dsn = self.dsn_for(name)
        try:
            conn = psycopg.connect(dsn, autocommit=True)
        except psycopg.Error as e:
            logger.error(f"Failed to connect to {mask_password(dsn)}: {e}")
            raise ProvisionError(f"Could not connect to database '{name}': {e}") from e

        with conn:
            for path in script_files(resolution):
                self._run_script(conn, name, path)

        logger.info(f"Database '{name}' is ready.")
        return dsn

    def _run_script(self, conn: psycopg.Connection, database: str, path: str) -> None:
        logger.info(f"Running init script {path} in database '{database}'...")
        try:
            with open(path, encoding="utf-8") as f:
                script = f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read init script {path}: {e}")
            raise ProvisionError(f"Could not read init script '{path}': {e}") from e

        try:
            conn.execute(script)
        except psycopg.Error as e:
            logger.error(f"Init script {path} failed in database '{database}': {e}")
            raise ProvisionError(f"Init script '{path}' failed in database '{database}': {e}") from e

    def _on_started(self) -> None:
        dsn = self._format_dsn(self._endpoint, self.database)
        logger.info(f"Opening primary connection to {mask_password(dsn)}")
        # CREATE DATABASE cannot run inside a transaction block.
        self.main_conn = psycopg.connect(dsn, autocommit=True)

    def _on_teardown(self) -> None:
        if self.main_conn is not None:
            self.main_conn.close()
            self.main_conn = None
            logger.info("PostgreSQL primary connection closed.")
