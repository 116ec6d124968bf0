"""In-memory stand-in for a cassandra-asyncio-driver session.

Interprets the restricted CQL the services prepare:

- CREATE KEYSPACE / CREATE INDEX (ignored)
- CREATE TABLE with inline or composite PRIMARY KEY and CLUSTERING ORDER
- SELECT * FROM t [WHERE a = ? AND b = ?]
- INSERT INTO t (cols) VALUES (?, ...) [IF NOT EXISTS]
- UPDATE t SET a = ?, ... WHERE k = ? [AND ...] [IF EXISTS | IF col = ?]
- DELETE FROM t WHERE k = ? [AND ...]

Rows come back as SimpleNamespace objects, like the driver's named tuples.
"""

import re
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any


def _normalize(cql: str) -> str:
    return " ".join(cql.split()).rstrip(";")


def _table_name(qualified: str) -> str:
    return qualified.split(".")[-1]


def _columns(clause: str) -> list[str]:
    """Column names of an 'a = ? AND b = ?' or 'a = ?, b = ?' clause."""
    parts = re.split(r"\s+AND\s+|\s*,\s*", clause.strip(), flags=re.IGNORECASE)
    return [part.split("=")[0].strip() for part in parts if part.strip()]


def _split_top_level(body: str) -> list[str]:
    parts, depth, current = [], 0, []
    for char in body:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    if "".join(current).strip():
        parts.append("".join(current).strip())
    return parts


@dataclass
class FakeTable:
    name: str
    columns: list[str]
    partition_key: list[str]
    clustering: list[tuple[str, bool]]  # (column, descending)
    rows: dict[tuple, dict[str, Any]] = field(default_factory=dict)

    @property
    def primary_key(self) -> list[str]:
        return self.partition_key + [column for column, _ in self.clustering]

    def key_of(self, values: dict[str, Any]) -> tuple:
        return tuple(values.get(column) for column in self.primary_key)

    def matching(self, criteria: dict[str, Any]) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.rows.values()
            if all(row.get(column) == value for column, value in criteria.items())
        ]
        for column, descending in reversed(self.clustering):
            rows.sort(
                key=lambda row, c=column: (row.get(c) is None, row.get(c)),
                reverse=descending,
            )
        return rows


@dataclass
class FakePreparedStatement:
    query_string: str
    kind: str
    table: str
    columns: list[str] = field(default_factory=list)
    where: list[str] = field(default_factory=list)
    condition: list[str] = field(default_factory=list)
    if_not_exists: bool = False
    if_exists: bool = False


class FakeResultSet:
    """Subset of cassandra.cluster.ResultSet used by the services."""

    def __init__(self, rows: list[dict[str, Any]] | None = None, applied: bool = True):
        self._rows = [SimpleNamespace(**row) for row in rows or []]
        self.was_applied = applied

    def one(self) -> SimpleNamespace | None:
        return self._rows[0] if self._rows else None

    def all(self) -> list[SimpleNamespace]:
        return list(self._rows)

    def __iter__(self):
        return iter(self._rows)


class FakeSession:
    """Synchronous in-memory store exposing prepare/execute/aexecute."""

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.executed: list[str] = []
        self._failures: list[Exception] = []
        self._targeted: list[tuple[str, str, Exception]] = []

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_next(self, error: Exception, times: int = 1) -> None:
        """Raise ``error`` from the next ``times`` executions."""
        self._failures.extend([error] * times)

    def fail_on(self, kind: str, table: str, error: Exception) -> None:
        """Raise ``error`` from the next ``kind`` statement on ``table``."""
        self._targeted.append((kind, table, error))

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables[table].rows.values())

    # ------------------------------------------------------------------
    # Session API
    # ------------------------------------------------------------------

    def prepare(self, cql: str) -> FakePreparedStatement:
        query = _normalize(cql)

        match = re.fullmatch(
            r"SELECT \* FROM (\S+?)(?: WHERE (.+?))?", query, re.IGNORECASE
        )
        if match:
            return FakePreparedStatement(
                query,
                "select",
                _table_name(match.group(1)),
                where=_columns(match.group(2)) if match.group(2) else [],
            )

        match = re.fullmatch(
            r"INSERT INTO (\S+?) ?\((.+?)\) VALUES ?\((.+?)\)( IF NOT EXISTS)?",
            query,
            re.IGNORECASE,
        )
        if match:
            return FakePreparedStatement(
                query,
                "insert",
                _table_name(match.group(1)),
                columns=_columns(match.group(2)),
                if_not_exists=bool(match.group(4)),
            )

        match = re.fullmatch(
            r"UPDATE (\S+) SET (.+?) WHERE (.+?)(?: IF (EXISTS|.+))?",
            query,
            re.IGNORECASE,
        )
        if match:
            condition = match.group(4)
            return FakePreparedStatement(
                query,
                "update",
                _table_name(match.group(1)),
                columns=_columns(match.group(2)),
                where=_columns(match.group(3)),
                condition=(
                    _columns(condition)
                    if condition and condition.upper() != "EXISTS"
                    else []
                ),
                if_exists=bool(condition) and condition.upper() == "EXISTS",
            )

        match = re.fullmatch(r"DELETE FROM (\S+) WHERE (.+?)", query, re.IGNORECASE)
        if match:
            return FakePreparedStatement(
                query, "delete", _table_name(match.group(1)), where=_columns(match.group(2))
            )

        msg = f"Unsupported CQL for FakeSession: {query}"
        raise ValueError(msg)

    async def aexecute(self, statement: Any, params: list[Any] | None = None):
        return self.execute(statement, params)

    def execute(self, statement: Any, params: list[Any] | None = None):
        if self._failures:
            raise self._failures.pop(0)
        for index, (kind, table, error) in enumerate(self._targeted):
            if getattr(statement, "kind", None) == kind and statement.table == table:
                del self._targeted[index]
                raise error

        if isinstance(statement, str):
            return self._execute_ddl(_normalize(statement))

        self.executed.append(statement.query_string)
        params = list(params or [])
        table = self.tables[statement.table]
        handler = getattr(self, f"_execute_{statement.kind}")
        return handler(statement, table, params)

    # ------------------------------------------------------------------
    # Statement handlers
    # ------------------------------------------------------------------

    def _execute_ddl(self, query: str) -> FakeResultSet:
        upper = query.upper()
        if upper.startswith(("CREATE KEYSPACE", "CREATE INDEX", "ALTER")):
            return FakeResultSet()
        if upper.startswith("CREATE TABLE"):
            self._create_table(query)
            return FakeResultSet()
        msg = f"Unsupported unprepared CQL for FakeSession: {query}"
        raise ValueError(msg)

    def _create_table(self, query: str) -> None:
        clustering_order: dict[str, bool] = {}
        order_match = re.search(
            r" WITH CLUSTERING ORDER BY \((.+?)\)", query, re.IGNORECASE
        )
        if order_match:
            for part in order_match.group(1).split(","):
                column, direction = part.split()
                clustering_order[column] = direction.upper() == "DESC"
            query = query[: order_match.start()]

        header, body = query.split("(", 1)
        name = _table_name(header.split()[-1])
        body = body[: body.rfind(")")]

        columns: list[str] = []
        primary: list[str] = []
        partition: list[str] = []
        for definition in _split_top_level(body):
            if definition.upper().startswith("PRIMARY KEY"):
                key_body = definition[definition.index("(") + 1 : definition.rindex(")")]
                key_parts = _split_top_level(key_body)
                first = key_parts[0]
                if first.startswith("("):
                    partition = [c.strip() for c in first.strip("()").split(",")]
                else:
                    partition = [first.strip()]
                primary = [c.strip() for c in key_parts[1:]]
                continue
            column = definition.split()[0]
            columns.append(column)
            if definition.upper().endswith("PRIMARY KEY"):
                partition = [column]

        self.tables[name] = FakeTable(
            name=name,
            columns=columns,
            partition_key=partition,
            clustering=[(c, clustering_order.get(c, False)) for c in primary],
        )

    def _execute_select(self, statement, table: FakeTable, params: list[Any]):
        criteria = dict(zip(statement.where, params, strict=True))
        return FakeResultSet(table.matching(criteria))

    def _execute_insert(self, statement, table: FakeTable, params: list[Any]):
        values = dict(zip(statement.columns, params, strict=True))
        key = table.key_of(values)
        existing = table.rows.get(key)
        if statement.if_not_exists and existing is not None:
            return FakeResultSet([dict(existing)], applied=False)
        row = existing or dict.fromkeys(table.columns)
        row.update(values)
        table.rows[key] = row
        return FakeResultSet(applied=True)

    def _execute_update(self, statement, table: FakeTable, params: list[Any]):
        set_count, where_count = len(statement.columns), len(statement.where)
        assignments = dict(zip(statement.columns, params[:set_count], strict=True))
        where = dict(
            zip(statement.where, params[set_count : set_count + where_count], strict=True)
        )
        expected = dict(
            zip(statement.condition, params[set_count + where_count :], strict=True)
        )
        key = table.key_of(where)
        existing = table.rows.get(key)

        if statement.if_exists or expected:
            if existing is None:
                return FakeResultSet(applied=False)
            if any(existing.get(c) != v for c, v in expected.items()):
                return FakeResultSet([dict(existing)], applied=False)

        row = existing or {**dict.fromkeys(table.columns), **where}
        row.update(assignments)
        table.rows[key] = row
        return FakeResultSet(applied=True)

    def _execute_delete(self, statement, table: FakeTable, params: list[Any]):
        criteria = dict(zip(statement.where, params, strict=True))
        for row in table.matching(criteria):
            table.rows.pop(table.key_of(row), None)
        return FakeResultSet(applied=True)
