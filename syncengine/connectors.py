"""
Target database connectors.

A connector discovers the tables of a data source and inserts staged rows.
The bundled implementation writes through a Django database alias, so any
backend Django supports can be a target. Each row is inserted under its own
savepoint: one bad row is counted as failed without undoing the others.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from django.db import DatabaseError, connections, transaction

from syncengine.exceptions import CommitFailure, ConfigurationError

logger = logging.getLogger(__name__)

# Errors stored per commit; the rest are only counted
MAX_INSERT_ERRORS = 50


@dataclass
class ColumnSchema:
    name: str
    data_type: str
    nullable: bool = True
    has_default: bool = False
    is_primary_key: bool = False
    max_length: Optional[int] = None

    @property
    def is_required(self) -> bool:
        return not self.nullable and not self.has_default and not self.is_primary_key


@dataclass
class TableSchema:
    name: str
    schema: str = ""
    columns: List[ColumnSchema] = field(default_factory=list)

    def column(self, name: str) -> Optional[ColumnSchema]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


@dataclass
class InsertResult:
    inserted: int = 0
    failed: int = 0
    errors: List[dict] = field(default_factory=list)


@dataclass
class ColumnValidation:
    unknown_columns: List[str] = field(default_factory=list)
    missing_required: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.unknown_columns and not self.missing_required


class DatabaseConnector(ABC):
    """Interface every target database connector implements."""

    @abstractmethod
    def discover_tables(self, schema: Optional[str] = None) -> List[TableSchema]:
        """List tables and their columns."""

    @abstractmethod
    def insert_rows(
        self,
        schema: str,
        table: str,
        columns: List[str],
        rows: Iterable[Dict[str, Any]],
    ) -> InsertResult:
        """Insert rows, partitioning per-row success and failure."""

    def describe_table(self, schema: str, table: str) -> Optional[TableSchema]:
        for table_schema in self.discover_tables(schema or None):
            if table_schema.name == table:
                return table_schema
        return None


def _db_value(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class DjangoConnector(DatabaseConnector):
    """Connector over a configured Django database alias."""

    def __init__(self, alias: str = "default"):
        if alias not in connections.databases:
            raise ConfigurationError(f"Database alias '{alias}' is not configured")
        self.alias = alias

    @property
    def connection(self):
        return connections[self.alias]

    def _qualified(self, schema: str, table: str) -> str:
        quote = self.connection.ops.quote_name
        if schema:
            return f"{quote(schema)}.{quote(table)}"
        return quote(table)

    def discover_tables(self, schema: Optional[str] = None) -> List[TableSchema]:
        # Django introspection follows the connection's default schema / search path
        introspection = self.connection.introspection
        tables = []

        with self.connection.cursor() as cursor:
            for info in introspection.get_table_list(cursor):
                if info.type != "t":
                    continue
                primary_key = introspection.get_primary_key_column(cursor, info.name)
                columns = []
                for desc in introspection.get_table_description(cursor, info.name):
                    try:
                        data_type = introspection.get_field_type(desc.type_code, desc)
                    except KeyError:
                        data_type = str(desc.type_code)
                    columns.append(
                        ColumnSchema(
                            name=desc.name,
                            data_type=data_type,
                            nullable=bool(desc.null_ok),
                            has_default=getattr(desc, "default", None) is not None,
                            is_primary_key=desc.name == primary_key,
                            max_length=desc.internal_size or None,
                        )
                    )
                tables.append(TableSchema(name=info.name, schema=schema or "", columns=columns))
        return tables

    def insert_rows(
        self,
        schema: str,
        table: str,
        columns: List[str],
        rows: Iterable[Dict[str, Any]],
    ) -> InsertResult:
        if not columns:
            raise CommitFailure("No columns to insert")

        quote = self.connection.ops.quote_name
        sql = "INSERT INTO {table} ({columns}) VALUES ({placeholders})".format(
            table=self._qualified(schema, table),
            columns=", ".join(quote(c) for c in columns),
            placeholders=", ".join(["%s"] * len(columns)),
        )

        result = InsertResult()
        try:
            with transaction.atomic(using=self.alias):
                with self.connection.cursor() as cursor:
                    for index, row in enumerate(rows):
                        params = [_db_value(row.get(column)) for column in columns]
                        try:
                            with transaction.atomic(using=self.alias):
                                cursor.execute(sql, params)
                        except DatabaseError as e:
                            result.failed += 1
                            if len(result.errors) < MAX_INSERT_ERRORS:
                                result.errors.append({"row_index": index, "error": str(e)})
                            continue
                        result.inserted += 1
        except DatabaseError as e:
            raise CommitFailure(f"Insert into {table} failed: {e}")

        logger.info(
            f"Inserted {result.inserted} rows into {table} via '{self.alias}' "
            f"({result.failed} failed)"
        )
        return result


def get_connector(data_source) -> DatabaseConnector:
    """Return the connector for a DataSource."""
    if not data_source.is_active:
        raise ConfigurationError(f"Data source '{data_source.name}' is inactive")
    return DjangoConnector(data_source.connection_alias)


def validate_columns(rule_columns: Iterable[str], table: TableSchema) -> ColumnValidation:
    """
    Check extraction columns against a target table.

    Reports columns with no counterpart in the table, and required table
    columns (NOT NULL, no default, not the primary key) no rule fills.
    """
    rule_columns = list(rule_columns)
    known = set(table.column_names)
    return ColumnValidation(
        unknown_columns=[c for c in rule_columns if c not in known],
        missing_required=[
            c.name for c in table.columns if c.is_required and c.name not in rule_columns
        ],
    )
