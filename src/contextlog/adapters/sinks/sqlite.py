"""SQLite sink writing one row per event into a fixed-column table."""

import json
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from contextlog.adapters.sinks.sqlite_base import (
    SinkConnection,
    _safe_json_loads,
)
from contextlog.core.config import ColumnMapping
from contextlog.core.models import LogEvent, PropertyValue

DATETIME_TAG = "$datetime"


def _encode_overflow(properties: dict[str, PropertyValue]) -> str:
    """Serialize overflow properties; datetimes are tagged so they decode back."""
    return json.dumps(
        {
            key: {DATETIME_TAG: value.isoformat()}
            if isinstance(value, datetime)
            else value
            for key, value in properties.items()
        }
    )


def _decode_overflow(data: str | None) -> dict[str, PropertyValue]:
    decoded: dict[str, PropertyValue] = {}
    for key, value in _safe_json_loads(data).items():
        if isinstance(value, dict) and set(value) == {DATETIME_TAG}:
            value = datetime.fromisoformat(value[DATETIME_TAG])
        decoded[key] = value
    return decoded


@dataclass(frozen=True)
class StoredLogRow:
    """A row read back from the log table.

    ``properties`` merges the mapped columns that hold a value with the
    decoded overflow blob.
    """

    id: int
    message: str | None
    message_template: str | None
    level: str | None
    timestamp: datetime | None
    exception: str | None
    properties: dict[str, PropertyValue] = field(default_factory=dict)


class SQLiteLogSink:
    """SQLite implementation of SinkPort.

    Standard columns: ``Id, Message, MessageTemplate, Level, TimeStamp,
    Exception`` and the overflow column (``Properties`` by default),
    followed by the mapped columns of ``columns``. A property is written
    to its mapped column when the name matches and the value type fits;
    everything else goes to the overflow column as a JSON object. TEXT
    values longer than the column length are truncated.

    Uses aiosqlite for non-blocking writes over one connection per sink.
    Overflow datetimes are stored as ``{"$datetime": "<iso>"}`` and read
    back as ``datetime`` values.
    """

    def __init__(
        self,
        db_path: str,
        table_name: str = "Logs",
        columns: ColumnMapping | None = None,
        auto_create_table: bool = True,
        name: str = "sqlite",
    ) -> None:
        self.name = name
        self._table = table_name
        self._mapping = columns or ColumnMapping()
        self._connection = SinkConnection(
            db_path, self._schema() if auto_create_table else None
        )
        self._insert_query = self._build_insert()
        self._select_query = self._build_select()

    @property
    def table_name(self) -> str:
        return self._table

    @property
    def column_mapping(self) -> ColumnMapping:
        return self._mapping

    def _schema(self) -> str:
        mapped = ",\n".join(
            f'    "{c.name}" {c.sql_type} NULL' for c in self._mapping.columns
        )
        return f"""
CREATE TABLE IF NOT EXISTS "{self._table}" (
    "Id" INTEGER PRIMARY KEY AUTOINCREMENT,
    "Message" TEXT NULL,
    "MessageTemplate" TEXT NULL,
    "Level" VARCHAR(128) NULL,
    "TimeStamp" TEXT NULL,
    "Exception" TEXT NULL,
    "{self._mapping.overflow_column}" TEXT NULL{"," if mapped else ""}
{mapped}
);
CREATE INDEX IF NOT EXISTS "idx_{self._table}_timestamp"
    ON "{self._table}"("TimeStamp");
"""

    def _column_names(self) -> list[str]:
        return [
            "Message",
            "MessageTemplate",
            "Level",
            "TimeStamp",
            "Exception",
            self._mapping.overflow_column,
            *self._mapping.names,
        ]

    def _build_insert(self) -> str:
        names = self._column_names()
        column_list = ", ".join(f'"{n}"' for n in names)
        placeholders = ", ".join("?" for _ in names)
        return f'INSERT INTO "{self._table}" ({column_list}) VALUES ({placeholders})'

    def _build_select(self) -> str:
        column_list = ", ".join(f'"{n}"' for n in ["Id", *self._column_names()])
        return f'SELECT {column_list} FROM "{self._table}" ORDER BY "Id" ASC'

    def _to_row(self, event: LogEvent) -> tuple[Any, ...]:
        mapped: dict[str, Any] = {}
        overflow: dict[str, PropertyValue] = {}
        for key, value in event.properties.items():
            column = self._mapping.get(key)
            if column is not None and column.accepts(value):
                mapped[key] = column.to_db(value)
            else:
                overflow[key] = value
        return (
            event.rendered_message,
            event.message_template,
            event.level.display_name,
            event.timestamp.isoformat(),
            event.exception.format() if event.exception is not None else None,
            _encode_overflow(overflow) if overflow else None,
            *(mapped.get(name) for name in self._mapping.names),
        )

    def _from_row(self, row: Any) -> StoredLogRow:
        properties: dict[str, PropertyValue] = {}
        for column, value in zip(self._mapping.columns, row[7:], strict=True):
            if value is not None:
                properties[column.name] = column.from_db(value)
        properties.update(_decode_overflow(row[6]))
        return StoredLogRow(
            id=row[0],
            message=row[1],
            message_template=row[2],
            level=row[3],
            timestamp=datetime.fromisoformat(row[4]) if row[4] else None,
            exception=row[5],
            properties=properties,
        )

    async def open(self) -> None:
        """Connect and create the table if absent (when provisioning is enabled)."""
        await self._connection.ensure_open()

    async def write(self, event: LogEvent) -> None:
        """Insert one row for the event."""
        async with self._connection.connection() as db:
            await db.execute(self._insert_query, self._to_row(event))
            await db.commit()

    async def read(self) -> AsyncIterable[StoredLogRow]:
        """Read all rows in insertion order."""
        async with self._connection.connection() as db:
            async with db.execute(self._select_query) as cursor:
                async for row in cursor:
                    yield self._from_row(row)

    async def count(self) -> int:
        """Return total number of rows in the table."""
        async with self._connection.connection() as db:
            async with db.execute(f'SELECT COUNT(*) FROM "{self._table}"') as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def clear(self) -> None:
        """Delete all rows."""
        async with self._connection.connection() as db:
            await db.execute(f'DELETE FROM "{self._table}"')
            await db.commit()

    async def close(self) -> None:
        await self._connection.close()
