"""Tests for pipeline configuration."""

from datetime import UTC, datetime

import pytest

from contextlog.core.config import (
    DEFAULT_COLUMNS,
    Column,
    ColumnMapping,
    ColumnType,
    PipelineConfig,
    SinkKind,
    SinkTarget,
)
from contextlog.core.errors import ConfigurationError

pytestmark = pytest.mark.tier(1)


class TestColumn:
    """Tests for typed column definitions."""

    @pytest.mark.core
    def test_text_column_with_length_uses_varchar(self) -> None:
        assert Column("ClientIP", max_length=256).sql_type == "VARCHAR(256)"

    @pytest.mark.core
    def test_text_value_is_truncated(self) -> None:
        column = Column("ClientIP", max_length=256)
        assert column.to_db("x" * 300) == "x" * 256

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("column_type", "value", "expected"),
        [
            (ColumnType.TEXT, "abc", True),
            (ColumnType.TEXT, 5, False),
            (ColumnType.INTEGER, 42, True),
            (ColumnType.INTEGER, True, False),
            (ColumnType.INTEGER, 1.5, False),
            (ColumnType.REAL, 1.5, True),
            (ColumnType.BOOLEAN, False, True),
            (ColumnType.TIMESTAMP, datetime(2026, 1, 1, tzinfo=UTC), True),
            (ColumnType.TIMESTAMP, "2026-01-01", False),
        ],
    )
    def test_accepts(self, column_type: ColumnType, value: object, expected: bool) -> None:
        assert Column("Field", column_type).accepts(value) is expected

    @pytest.mark.core
    def test_boolean_and_timestamp_conversion(self) -> None:
        stamp = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
        boolean = Column("Flag", ColumnType.BOOLEAN)
        timestamp = Column("When", ColumnType.TIMESTAMP)
        assert boolean.from_db(boolean.to_db(True)) is True
        assert timestamp.from_db(timestamp.to_db(stamp)) == stamp

    @pytest.mark.core
    def test_rejects_invalid_name(self) -> None:
        with pytest.raises(ConfigurationError):
            Column("bad name; DROP TABLE")

    @pytest.mark.core
    def test_rejects_length_on_non_text(self) -> None:
        with pytest.raises(ConfigurationError):
            Column("ExecutionTimeMs", ColumnType.INTEGER, max_length=10)

    @pytest.mark.core
    def test_rejects_non_positive_length(self) -> None:
        with pytest.raises(ConfigurationError):
            Column("UserId", max_length=0)


class TestColumnMapping:
    """Tests for column mappings."""

    @pytest.mark.core
    def test_default_columns(self) -> None:
        mapping = ColumnMapping()
        assert mapping.names == tuple(c.name for c in DEFAULT_COLUMNS)
        assert mapping.get("RequestPath").max_length == 500
        assert mapping.get("ExecutionTimeMs").type is ColumnType.INTEGER
        assert mapping.get("Unknown") is None

    @pytest.mark.core
    def test_rejects_duplicate_column(self) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate"):
            ColumnMapping(columns=(Column("UserId"), Column("UserId")))

    @pytest.mark.core
    def test_rejects_standard_column_clash(self) -> None:
        with pytest.raises(ConfigurationError, match="standard column"):
            ColumnMapping(columns=(Column("Message"),))

    @pytest.mark.core
    def test_rejects_overflow_clash(self) -> None:
        with pytest.raises(ConfigurationError, match="overflow"):
            ColumnMapping(columns=(Column("Extra"),), overflow_column="Extra")

    @pytest.mark.core
    def test_with_lengths_overrides_text_columns(self) -> None:
        mapping = ColumnMapping().with_lengths({"ClientIP": 64})
        assert mapping.get("ClientIP").max_length == 64
        assert mapping.get("UserId").max_length == 256

    @pytest.mark.core
    def test_with_lengths_rejects_unknown_column(self) -> None:
        with pytest.raises(ConfigurationError, match="unknown columns"):
            ColumnMapping().with_lengths({"Nope": 10})


class TestSinkTarget:
    """Tests for sink target descriptors."""

    @pytest.mark.core
    def test_name_defaults_to_kind(self) -> None:
        assert SinkTarget.console().name == "console"
        assert SinkTarget.memory().kind is SinkKind.MEMORY

    @pytest.mark.core
    def test_sqlite_defaults_retry(self) -> None:
        target = SinkTarget.sqlite("logs.db")
        assert target.max_retries == 2
        assert target.retry_backoff > 0
        assert target.table_name == "Logs"

    @pytest.mark.core
    def test_sqlite_requires_db_path(self) -> None:
        with pytest.raises(ConfigurationError, match="db_path"):
            SinkTarget(kind=SinkKind.SQLITE)

    @pytest.mark.core
    def test_rejects_invalid_table_name(self) -> None:
        with pytest.raises(ConfigurationError, match="table name"):
            SinkTarget.sqlite("logs.db", table_name="Logs; --")

    @pytest.mark.core
    def test_rejects_unknown_kind(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown sink kind"):
            SinkTarget(kind="kafka")  # type: ignore[arg-type]

    @pytest.mark.core
    @pytest.mark.parametrize(
        "options",
        [{"max_retries": -1}, {"retry_backoff": -0.1}, {"queue_capacity": 0}],
    )
    def test_rejects_invalid_options(self, options: dict[str, float]) -> None:
        with pytest.raises(ConfigurationError):
            SinkTarget.memory(**options)

    @pytest.mark.core
    def test_from_mapping_with_columns(self) -> None:
        target = SinkTarget.from_mapping(
            {
                "kind": "sqlite",
                "db_path": "logs.db",
                "columns": [
                    {"name": "UserId", "max_length": 64},
                    {"name": "ExecutionTimeMs", "type": "integer"},
                ],
                "overflow_column": "Extra",
            }
        )
        assert target.kind is SinkKind.SQLITE
        assert target.columns.names == ("UserId", "ExecutionTimeMs")
        assert target.columns.overflow_column == "Extra"
        assert target.max_retries == 2

    @pytest.mark.core
    @pytest.mark.parametrize(
        "data",
        [
            {"db_path": "logs.db"},
            {"kind": "console", "colour": "red"},
            {"kind": "sqlite", "db_path": "x.db", "columns": [{"type": "TEXT"}]},
            {"kind": "sqlite", "db_path": "x.db", "columns": [{"name": "A", "type": "BLOB"}]},
        ],
    )
    def test_from_mapping_rejects_invalid_data(self, data: dict[str, object]) -> None:
        with pytest.raises(ConfigurationError):
            SinkTarget.from_mapping(data)


class TestPipelineConfig:
    """Tests for pipeline options."""

    @pytest.mark.core
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CONTEXTLOG_ENVIRONMENT", raising=False)
        config = PipelineConfig(service_name="OrderService")
        assert config.environment == "Production"
        assert config.default_operation_name == "UnknownOperation"
        assert config.queue_capacity == 1024

    @pytest.mark.core
    def test_environment_from_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONTEXTLOG_ENVIRONMENT", "Staging")
        assert PipelineConfig(service_name="OrderService").environment == "Staging"

    @pytest.mark.core
    def test_requires_service_name(self) -> None:
        with pytest.raises(ConfigurationError, match="service_name"):
            PipelineConfig(service_name="")

    @pytest.mark.core
    def test_rejects_duplicate_sink_names(self) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate sink names"):
            PipelineConfig(
                service_name="s",
                sinks=(SinkTarget.console(), SinkTarget.console()),
            )

    @pytest.mark.core
    def test_column_lengths_apply_to_sqlite_targets(self) -> None:
        config = PipelineConfig(
            service_name="s",
            sinks=(SinkTarget.console(), SinkTarget.sqlite("logs.db")),
            column_lengths={"ClientIP": 45},
        )
        sqlite_target = config.sinks[1]
        assert sqlite_target.columns.get("ClientIP").max_length == 45

    @pytest.mark.core
    def test_from_mapping(self) -> None:
        config = PipelineConfig.from_mapping(
            {
                "service_name": "OrderService",
                "environment": "Testing",
                "default_operation_name": None,
                "sinks": [{"kind": "console"}, {"kind": "memory", "name": "audit"}],
            }
        )
        assert [t.name for t in config.sinks] == ["console", "audit"]
        assert config.default_operation_name is None

    @pytest.mark.core
    def test_from_mapping_rejects_unknown_option(self) -> None:
        with pytest.raises(ConfigurationError):
            PipelineConfig.from_mapping({"service_name": "s", "verbosity": 3})
