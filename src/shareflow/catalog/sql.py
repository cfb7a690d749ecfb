"""
SQL catalog on an ibis backend.

DuckDB (file or memory) serves single-host runs; PostgreSQL or MySQL serve
deployments where many worker processes insert concurrently. Uniqueness of
``storage_path`` is enforced by the database.
"""

from __future__ import annotations

import math
import re
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import duckdb
import ibis

from shareflow.catalog.base import DEFAULT_PAGE_SIZE, Catalog
from shareflow.exceptions import CatalogWriteError, ConfigurationError, DuplicateRecordError
from shareflow.models import SOURCE_DROPBOX, SOURCE_GOOGLE_DRIVE, CatalogPage, MetadataRecord
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.catalog.sql")

DEFAULT_TABLE = "image_metadata"
SUPPORTED_BACKENDS = ("duckdb", "postgres", "mysql")

# storage_path is sized to fit a unique index on MySQL utf8mb4
_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    id VARCHAR(36) PRIMARY KEY,
    name VARCHAR(500) NOT NULL,
    google_drive_id VARCHAR(255),
    dropbox_id VARCHAR(255),
    size BIGINT NOT NULL,
    mime_type VARCHAR(100) NOT NULL,
    storage_path VARCHAR(700) NOT NULL UNIQUE,
    source VARCHAR(50) NOT NULL,
    created_at TIMESTAMP NOT NULL
)
"""

# Row schema for inserts; values travel as data, never as SQL text
_ROW_SCHEMA = ibis.schema(
    {
        "id": "string",
        "name": "string",
        "google_drive_id": "string",
        "dropbox_id": "string",
        "size": "int64",
        "mime_type": "string",
        "storage_path": "string",
        "source": "string",
        "created_at": "timestamp",
    }
)

UNIQUE_VIOLATION_SQLSTATE = "23505"
MYSQL_DUPLICATE_ENTRY = 1062


def _is_unique_violation(error: BaseException) -> bool:
    """True when the driver reports a uniqueness violation."""
    if isinstance(error, duckdb.ConstraintException):
        return True
    # psycopg exposes sqlstate, psycopg2 pgcode
    code = getattr(error, "sqlstate", None) or getattr(error, "pgcode", None)
    if code == UNIQUE_VIOLATION_SQLSTATE:
        return True
    return type(error).__name__ == "IntegrityError" and error.args[:1] == (MYSQL_DUPLICATE_ENTRY,)


def _utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def _clean(value: Any) -> Any:
    # pandas hands back NaN/NaT for missing values
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, float) and math.isnan(value):
        return None
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        return value.item()
    return value


def _to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


class SQLCatalog(Catalog):
    """
    ibis-backed catalog.

    Examples:
        >>> catalog = SQLCatalog("duckdb", path=":memory:")
        >>> catalog.initialize()
        >>> record_id = catalog.insert(record)
        >>> page = catalog.query(source="google_drive", limit=10)
    """

    def __init__(
        self,
        backend: str = "duckdb",
        *,
        path: str = ":memory:",
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
        table: str = DEFAULT_TABLE,
        connection: ibis.BaseBackend | None = None,
    ):
        if backend not in SUPPORTED_BACKENDS:
            raise ConfigurationError(
                f"Unsupported catalog backend '{backend}'. Supported: {', '.join(SUPPORTED_BACKENDS)}"
            )
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", table):
            raise ConfigurationError(f"Invalid catalog table name '{table}'")

        self.backend = backend
        self.path = path
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.table = table
        self._connection = connection
        self._lock = threading.Lock()
        self._initialized = False

    @property
    def connection(self) -> ibis.BaseBackend:
        """ibis backend (lazy initialization)."""
        if self._connection is None:
            self._connection = self._connect()
        return self._connection

    def _connect(self) -> ibis.BaseBackend:
        if self.backend == "duckdb":
            if self.path == ":memory:":
                return ibis.duckdb.connect()
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            return ibis.duckdb.connect(self.path)

        kwargs = {
            "host": self.host or "localhost",
            "user": self.user,
            "password": self.password,
            "database": self.database,
        }
        if self.port:
            kwargs["port"] = int(self.port)
        if self.backend == "postgres":
            return ibis.postgres.connect(**kwargs)
        return ibis.mysql.connect(**kwargs)

    def _execute(self, sql: str) -> None:
        result = self.connection.raw_sql(sql)
        # DuckDB hands back its own connection; the others a cursor to close
        if self.backend != "duckdb" and hasattr(result, "close"):
            result.close()

    def initialize(self) -> None:
        with self._lock:
            if self._initialized:
                return
            self._execute(_CREATE_TABLE.format(table=self.table))
            self._initialized = True
        logger.info(f"Catalog table {self.table} ready ({self.backend})")

    def insert(self, record: MetadataRecord) -> str:
        self.initialize()
        record_id = record.id or str(uuid.uuid4())
        values = {
            "id": record_id,
            "name": record.name,
            "google_drive_id": record.google_drive_id,
            "dropbox_id": record.dropbox_id,
            "size": int(record.size),
            "mime_type": record.mime_type,
            "storage_path": record.storage_locator,
            "source": record.source,
            "created_at": _utc_naive(record.created_at or datetime.now(UTC)),
        }

        try:
            with self._lock:
                self.connection.insert(self.table, ibis.memtable([values], schema=_ROW_SCHEMA))
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(record.storage_locator) from e
            raise CatalogWriteError(
                f"Failed to insert catalog record for {record.storage_locator}: {e}",
                details={"storage_locator": record.storage_locator},
            ) from e

        record.id = record_id
        logger.debug(f"Catalog record {record_id} inserted for {record.storage_locator}")
        return record_id

    def query(self, source: str | None = None, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> CatalogPage:
        self.initialize()
        with self._lock:
            table = self.connection.table(self.table)
            if source:
                table = table.filter(table.source == source)
            total = int(table.count().execute())
            expr = table.order_by(ibis.desc("created_at")).limit(max(limit, 0), offset=max(offset, 0))
            frame = expr.execute()

        rows = [self._to_record(row) for row in frame.to_dict("records")]
        return CatalogPage(rows=rows, total=total)

    @staticmethod
    def _to_record(row: dict[str, Any]) -> MetadataRecord:
        row = {k: _clean(v) for k, v in row.items()}
        source = row["source"]
        if source == SOURCE_DROPBOX:
            provider_id = row.get("dropbox_id")
        elif source == SOURCE_GOOGLE_DRIVE:
            provider_id = row.get("google_drive_id")
        else:
            provider_id = row.get("google_drive_id") or row.get("dropbox_id")
        return MetadataRecord(
            id=row["id"],
            name=row["name"],
            provider_id=provider_id or "",
            size=int(row["size"]),
            mime_type=row["mime_type"],
            storage_locator=row["storage_path"],
            source=source,
            created_at=_to_datetime(row.get("created_at")),
        )

    def close(self) -> None:
        with self._lock:
            if self._connection is not None and hasattr(self._connection, "disconnect"):
                self._connection.disconnect()
            self._connection = None
            self._initialized = False

    def __repr__(self) -> str:
        target = self.path if self.backend == "duckdb" else f"{self.host}:{self.port}/{self.database}"
        return f"{self.__class__.__name__}(backend='{self.backend}', target='{target}', table='{self.table}')"
