"""PostgreSQL connection pool for the volunteer record store.

One ConnectionManager is shared by every repository in a process. Each
statement runs inside transaction(): committed on success, rolled back
on any error, and bounded by a server-side statement timeout so a stuck
row lock cannot stall crisis assignment.

Credentials come from AWS Secrets Manager in production and from
LIFELINE_DB_* environment variables in development.
"""
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator

logger = logging.getLogger(__name__)

ENV_PREFIX = "LIFELINE_DB_"


def _env(prefix: str, name: str, default: str) -> str:
    return os.getenv(f"{prefix}{name}", default)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the volunteer database."""
    host: str
    port: int = 5432
    database: str = "lifeline"
    username: str = ""
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    connect_timeout: int = 10
    statement_timeout_ms: int = 2000
    ssl_mode: str = "require"
    application_name: str = "lifeline-volunteer-service"

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "DatabaseConfig":
        """Build config from environment variables.

        Reads HOST, PORT, NAME, USER, PASSWORD, MIN_CONN, MAX_CONN,
        STATEMENT_TIMEOUT_MS and SSL_MODE, each under `prefix`.
        """
        return cls(
            host=_env(prefix, "HOST", "localhost"),
            port=int(_env(prefix, "PORT", "5432")),
            database=_env(prefix, "NAME", "lifeline"),
            username=_env(prefix, "USER", ""),
            password=_env(prefix, "PASSWORD", ""),
            min_connections=int(_env(prefix, "MIN_CONN", "2")),
            max_connections=int(_env(prefix, "MAX_CONN", "10")),
            statement_timeout_ms=int(_env(prefix, "STATEMENT_TIMEOUT_MS", "2000")),
            ssl_mode=_env(prefix, "SSL_MODE", "require"),
        )

    @classmethod
    def from_secrets_manager(
        cls,
        secret_arn: str,
        region: str = "us-east-1",
        prefix: str = ENV_PREFIX,
    ) -> "DatabaseConfig":
        """Overlay credentials from AWS Secrets Manager on the env config.

        Pool sizing and timeouts still come from the environment; the
        secret supplies host, port, dbname, username and password.

        Raises:
            Exception: Whatever boto3 raised; the service cannot start
                without credentials
        """
        import boto3

        try:
            client = boto3.client("secretsmanager", region_name=region)
            secret = json.loads(
                client.get_secret_value(SecretId=secret_arn)["SecretString"]
            )
        except Exception as e:
            logger.error(
                "SECRETS_MANAGER_LOAD_FAILED",
                extra={"error": str(e), "secret_arn": secret_arn}
            )
            raise

        base = cls.from_env(prefix)
        return replace(
            base,
            host=secret.get("host", base.host),
            port=int(secret.get("port", base.port)),
            database=secret.get("dbname", base.database),
            username=secret.get("username", ""),
            password=secret.get("password", ""),
        )

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg2.connect."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.username,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "sslmode": self.ssl_mode,
            "application_name": self.application_name,
            "options": f"-c statement_timeout={self.statement_timeout_ms}",
        }


class ConnectionManager:
    """Thread-safe psycopg2 pool.

    Concurrent assignment attempts each check out their own connection;
    the pool is created lazily on first use.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = None
        self._initialized = False

        logger.info(
            "CONNECTION_MANAGER_CREATED",
            extra={
                "host": config.host,
                "database": config.database,
                "max_connections": config.max_connections,
            }
        )

    def initialize(self) -> None:
        """Create the pool. Safe to call more than once.

        Raises:
            psycopg2.Error: The database refused the initial connections
        """
        if self._initialized:
            return

        from psycopg2 import pool

        try:
            self._pool = pool.ThreadedConnectionPool(
                minconn=self.config.min_connections,
                maxconn=self.config.max_connections,
                **self.config.connect_kwargs(),
            )
        except Exception as e:
            logger.error("CONNECTION_POOL_INIT_FAILED", extra={"error": str(e)})
            raise

        self._initialized = True
        logger.info(
            "CONNECTION_POOL_INITIALIZED",
            extra={
                "host": self.config.host,
                "statement_timeout_ms": self.config.statement_timeout_ms,
            }
        )

    @contextmanager
    def get_connection(self) -> Iterator[Any]:
        """Check a connection out of the pool; it is always returned."""
        if not self._initialized:
            self.initialize()

        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Cursor inside a transaction.

        Usage:
            with manager.transaction() as cur:
                cur.execute("UPDATE volunteers SET ... RETURNING *", params)
                row = cur.fetchone()

        Commits when the block exits normally, rolls back and re-raises
        otherwise.
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def health_check(self) -> Dict[str, Any]:
        """Readiness probe: round-trip a trivial query."""
        if not self._initialized:
            return {"status": "not_initialized", "healthy": False}

        try:
            with self.transaction() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
        except Exception as e:
            logger.error("DATABASE_HEALTH_CHECK_FAILED", extra={"error": str(e)})
            return {"status": "error", "healthy": False, "error": str(e)}

        return {
            "status": "connected",
            "healthy": True,
            "database": self.config.database,
        }

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            logger.info("CONNECTION_POOL_CLOSED")
        self._pool = None
        self._initialized = False
