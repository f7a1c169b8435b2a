"""
Relational Store Interface.

Table-oriented async query builder shared by every store implementation,
plus an in-process implementation used for local development and tests.
"""

import copy
import logging
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from ..utils.common import parse_timestamp

logger = logging.getLogger(__name__)

# PostgREST error code for "no rows returned" on single-row fetches
NO_ROWS_CODE = "PGRST116"


class StoreError(Exception):
    """The backing store failed or rejected a query."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class NoRowsError(StoreError):
    """A single-row fetch matched nothing."""

    def __init__(self, table: str):
        super().__init__(f"No rows found in '{table}'", code=NO_ROWS_CODE, status_code=406)
        self.table = table


class Filter(NamedTuple):
    """A single filter predicate."""
    op: str
    column: str
    value: Any = None


class TableQuery:
    """
    Chainable query against one table.

    Filters, ordering and range are accumulated and handed to the store
    when a terminal coroutine (execute/single/update/delete) is awaited.
    """

    def __init__(self, store: "BaseStore", table: str):
        self._store = store
        self.table = table
        self.columns = "*"
        self.filters: List[Filter] = []
        self.ordering: List[Tuple[str, bool]] = []
        self.row_range: Optional[Tuple[int, int]] = None

    def select(self, columns: str = "*") -> "TableQuery":
        self.columns = columns
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter("eq", column, value))
        return self

    def contains(self, column: str, values: List[Any]) -> "TableQuery":
        self.filters.append(Filter("contains", column, list(values)))
        return self

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        self.filters.append(Filter("ilike", column, pattern))
        return self

    def lt(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter("lt", column, value))
        return self

    def not_null(self, column: str) -> "TableQuery":
        self.filters.append(Filter("not_null", column))
        return self

    def order(self, column: str, desc: bool = False) -> "TableQuery":
        self.ordering.append((column, desc))
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        """Limit to rows start..end (inclusive, zero-based)."""
        if start < 0 or end < start:
            raise ValueError(f"Invalid range: {start}-{end}")
        self.row_range = (start, end)
        return self

    async def execute(self) -> List[Dict[str, Any]]:
        return await self._store.fetch(self)

    async def single(self) -> Dict[str, Any]:
        """Fetch exactly one row, raising NoRowsError when none match."""
        rows = await self._store.fetch(self)
        if not rows:
            raise NoRowsError(self.table)
        if len(rows) > 1:
            raise StoreError(
                f"Expected one row from '{self.table}', got {len(rows)}",
                code="PGRST116",
                status_code=406,
            )
        return rows[0]

    async def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return await self._store.insert(self.table, row)

    async def upsert(self, row: Dict[str, Any], on_conflict: str = "id") -> Dict[str, Any]:
        return await self._store.upsert(self.table, row, on_conflict)

    async def update(self, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._store.update(self, values)

    async def delete(self) -> List[Dict[str, Any]]:
        return await self._store.delete(self)


class BaseStore(ABC):
    """Generic CRUD interface over named tables."""

    def table(self, name: str) -> TableQuery:
        """Start a query against a table."""
        return TableQuery(self, name)

    @property
    def is_ready(self) -> bool:
        return True

    @abstractmethod
    async def fetch(self, query: TableQuery) -> List[Dict[str, Any]]:
        """Return rows matching the query."""

    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored."""

    @abstractmethod
    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str) -> Dict[str, Any]:
        """Insert or replace the row sharing the on_conflict column."""

    @abstractmethod
    async def update(self, query: TableQuery, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Update matching rows and return them."""

    @abstractmethod
    async def delete(self, query: TableQuery) -> List[Dict[str, Any]]:
        """Delete matching rows and return them."""

    async def close(self) -> None:
        """Release any held connections."""


def _coerce_comparable(value: Any) -> Any:
    """Parse ISO-8601 strings so timestamps compare chronologically."""
    if isinstance(value, str):
        parsed = parse_timestamp(value)
        return value if parsed is None else parsed
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _ilike_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a SQL ILIKE pattern (% and _) into a regex."""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _matches(row: Dict[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)

    if flt.op == "eq":
        return value == flt.value
    if flt.op == "not_null":
        return value is not None
    if flt.op == "contains":
        if not isinstance(value, (list, tuple, set)):
            return False
        return all(item in value for item in flt.value)
    if flt.op == "ilike":
        if not isinstance(value, str):
            return False
        return bool(_ilike_regex(flt.value).match(value))
    if flt.op == "lt":
        if value is None:
            return False
        try:
            return _coerce_comparable(value) < _coerce_comparable(flt.value)
        except TypeError:
            return False

    raise StoreError(f"Unsupported filter operator: {flt.op}")


# Foreign keys used to resolve embedded selects: (child, parent) -> column on child
FOREIGN_KEYS = {
    ("reports", "disasters"): "disaster_id",
    ("resources", "disasters"): "disaster_id",
}

EMBED_PATTERN = re.compile(r"^(\w+)\((.*)\)$")


class Embed(NamedTuple):
    """A related table requested inside a select, e.g. `reports(count)`."""
    table: str
    columns: List[str]


def _split_top_level(text: str) -> List[str]:
    """Split on commas that are not inside parentheses."""
    parts, depth, current = [], 0, []
    for char in text:
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current.append(char)
    parts.append("".join(current))
    return [part for part in parts if part]


def parse_select(columns: str) -> Tuple[List[str], List[Embed]]:
    """
    Split a PostgREST-style select string into plain columns and embeds.

    "*,reports(count),disasters(id,title)" ->
        (["*"], [Embed("reports", ["count"]), Embed("disasters", ["id", "title"])])
    """
    fields: List[str] = []
    embeds: List[Embed] = []
    for item in _split_top_level("".join(columns.split())):
        match = EMBED_PATTERN.match(item)
        if match:
            embeds.append(Embed(match.group(1), _split_top_level(match.group(2)) or ["*"]))
        else:
            fields.append(item)
    return fields or ["*"], embeds


def _project(row: Dict[str, Any], fields: List[str]) -> Dict[str, Any]:
    if "*" in fields:
        return dict(row)
    return {field: row.get(field) for field in fields}


class InMemoryStore(BaseStore):
    """
    Dictionary-backed store.

    Rows are deep-copied on the way in and out so callers can decorate
    returned records without mutating stored state.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        for name, rows in (tables or {}).items():
            self._tables[name] = [self._prepare(row) for row in rows]

    def _prepare(self, row: Dict[str, Any]) -> Dict[str, Any]:
        prepared = copy.deepcopy(row)
        prepared.setdefault("id", str(uuid.uuid4()))
        prepared.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return prepared

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        return self._tables.setdefault(table, [])

    def _embed(self, table: str, row: Dict[str, Any], embed: Embed) -> Any:
        """Resolve one embedded relation for a row."""
        children_fk = FOREIGN_KEYS.get((embed.table, table))
        if children_fk is not None:
            children = [r for r in self._rows(embed.table) if r.get(children_fk) == row.get("id")]
            if embed.columns == ["count"]:
                return [{"count": len(children)}]
            return [_project(child, embed.columns) for child in children]

        parent_fk = FOREIGN_KEYS.get((table, embed.table))
        if parent_fk is not None:
            for parent in self._rows(embed.table):
                if parent.get("id") == row.get(parent_fk):
                    return _project(parent, embed.columns)
            return None

        raise StoreError(f"No relationship between '{table}' and '{embed.table}'")

    def _select(self, query: TableQuery) -> List[Dict[str, Any]]:
        return [
            row for row in self._rows(query.table)
            if all(_matches(row, flt) for flt in query.filters)
        ]

    async def fetch(self, query: TableQuery) -> List[Dict[str, Any]]:
        rows = self._select(query)

        # Apply sort keys last-to-first so the first key dominates
        for column, desc in reversed(query.ordering):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: _coerce_comparable(r[column]), reverse=desc)
            rows = present + missing

        if query.row_range is not None:
            start, end = query.row_range
            rows = rows[start:end + 1]

        fields, embeds = parse_select(query.columns)
        shaped = []
        for row in rows:
            result = _project(row, fields)
            for embed in embeds:
                result[embed.table] = self._embed(query.table, row, embed)
            shaped.append(result)

        return copy.deepcopy(shaped)

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = self._prepare(row)
        self._rows(table).append(stored)
        return copy.deepcopy(stored)

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: str = "id") -> Dict[str, Any]:
        rows = self._rows(table)
        key = row.get(on_conflict)

        for index, existing in enumerate(rows):
            if key is not None and existing.get(on_conflict) == key:
                merged = {**existing, **copy.deepcopy(row)}
                rows[index] = merged
                return copy.deepcopy(merged)

        return await self.insert(table, row)

    async def update(self, query: TableQuery, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        updated = []
        for row in self._select(query):
            row.update(copy.deepcopy(values))
            updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, query: TableQuery) -> List[Dict[str, Any]]:
        doomed = self._select(query)
        doomed_ids = {id(row) for row in doomed}
        self._tables[query.table] = [
            row for row in self._rows(query.table) if id(row) not in doomed_ids
        ]
        return copy.deepcopy(doomed)
