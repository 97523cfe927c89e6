"""
query/engine.py -- Generic filter / sort / paginate engine over SQLAlchemy Core tables.

One Resource definition per listable table replaces a hand-written branch per
combination of active filters. The definition is a whitelist:

  fields   -- FilterField entries: which columns may be filtered, which
              comparisons each accepts, and how a query-string value is parsed.
  sortable -- accepted sort names mapped to columns. A requested sort key is
              looked up here and nowhere else, so a raw string never reaches
              the SQL layer.

Filtering is a left fold over an ordered list of FilterEntry values. Each step
ANDs one predicate onto the statement, or does nothing when the entry's value
is None. Entry order follows field declaration order, which keeps generated
SQL text reproducible.

Sorting: `name`, `name.asc`, or `name.desc`. Unknown keys fall back to the
resource's default order (primary key ascending). The default order is also
appended after an explicit sort as a tiebreaker so that pages never overlap.

Pagination runs strictly after filtering: one COUNT over the filtered
statement, then ORDER BY / LIMIT / OFFSET. total_pages = ceil(total / size).
A page past the end returns an empty list. Page and page size below 1 fall
back to the defaults; page sizes above the maximum are clamped.

Usage:
    USERS = Resource(
        name="users",
        table=_users,
        fields=[FilterField("email", _users.c.email, comparisons={Comparison.EQ, Comparison.LIKE},
                            default=Comparison.LIKE)],
        sortable={"email": _users.c.email},
        row_mapper=_row_to_user,
    )
    query = USERS.parse_params(request.query_params)
    with db.connect() as conn:
        page = USERS.paginate(conn, query)

Layer rule: imports only core/ and third-party libraries.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import Select, Table, func, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import ColumnElement

from core.errors import ValidationError

logger = logging.getLogger("gatehouse.query")

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# `created_at[gte]` -> ("created_at", "gte")
_BRACKET_KEY = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*)\[(?P<op>[A-Za-z]+)\]$")


# ---------------------------------------------------------------------------
# Filter primitives
# ---------------------------------------------------------------------------


class Comparison(str, Enum):
    EQ = "eq"
    LIKE = "like"
    GTE = "gte"
    LTE = "lte"


# Fixed order used when expanding one field into its query-string keys.
_COMPARISON_ORDER = (Comparison.EQ, Comparison.LIKE, Comparison.GTE, Comparison.LTE)

_OPERATORS: dict[Comparison, Callable[[ColumnElement, Any], ColumnElement]] = {
    Comparison.EQ: lambda column, value: column == value,
    Comparison.LIKE: lambda column, value: column.like(value),
    Comparison.GTE: lambda column, value: column >= value,
    Comparison.LTE: lambda column, value: column <= value,
}


def parse_datetime(raw: str) -> datetime:
    """Parse an ISO 8601 timestamp. A trailing 'Z' is accepted for UTC."""
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class FilterField:
    """One whitelisted filterable column."""

    name: str
    column: ColumnElement
    parse: Callable[[str], Any] = str
    comparisons: frozenset[Comparison] = frozenset({Comparison.EQ})
    default: Comparison = Comparison.EQ

    def __post_init__(self) -> None:
        object.__setattr__(self, "comparisons", frozenset(self.comparisons))
        if self.default not in self.comparisons:
            raise ValueError(f"default comparison {self.default.value!r} not allowed for field {self.name!r}")


@dataclass(frozen=True)
class FilterEntry:
    """A requested predicate. value=None means "not supplied" and is skipped."""

    field: str
    comparison: Comparison
    value: Any = None


@dataclass
class ListQuery:
    """Shape of a single list request. Carries no state beyond the request."""

    page: Optional[int] = None
    page_size: Optional[int] = None
    filters: list[FilterEntry] = field(default_factory=list)
    sort_by: Optional[str] = None


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    total_pages: int
    page: int
    page_size: int


def normalize_paging(
    page: Optional[int],
    page_size: Optional[int],
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> tuple[int, int]:
    """Resolve missing, zero, or negative paging input to the defaults."""
    resolved_page = page if page is not None and page >= 1 else DEFAULT_PAGE
    if page_size is None or page_size < 1:
        resolved_size = default_page_size
    else:
        resolved_size = min(page_size, max_page_size)
    return resolved_page, resolved_size


def total_pages_for(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total > 0 else 0


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


class Resource(Generic[T]):
    """Filter, sort and pagination whitelist for one table.

    The engine code below is shared by every resource; only this definition
    differs between them.
    """

    def __init__(
        self,
        name: str,
        table: Table,
        fields: Sequence[FilterField],
        sortable: Mapping[str, ColumnElement],
        row_mapper: Callable[[Any], T],
        default_order: Optional[Sequence[ColumnElement]] = None,
    ) -> None:
        self.name = name
        self.table = table
        self.fields: dict[str, FilterField] = {}
        for f in fields:
            if f.name in self.fields:
                raise ValueError(f"duplicate filter field {f.name!r} on resource {name!r}")
            self.fields[f.name] = f
        self.sortable = dict(sortable)
        self.row_mapper = row_mapper
        if default_order is None:
            default_order = [col.asc() for col in table.primary_key.columns]
        self.default_order = list(default_order)

    # ------------------------------------------------------------------
    # Query-string parsing
    # ------------------------------------------------------------------

    def parse_params(self, params: Mapping[str, str]) -> ListQuery:
        """Build a ListQuery from flat query-string parameters.

        Recognised keys: page, page_size, sort_by, `<field>` (the field's
        default comparison) and `<field>[eq|like|gte|lte]`. Empty values count
        as absent. Keys naming no known field are ignored.

        Raises ValidationError for a non-integer page/page_size, a value the
        field cannot parse, or a comparison the field does not allow.
        """
        for key in params:
            match = _BRACKET_KEY.match(key)
            if match is None or match.group("name") not in self.fields:
                continue
            f = self.fields[match.group("name")]
            op = match.group("op").lower()
            if op not in {c.value for c in f.comparisons}:
                raise ValidationError(f"Unsupported filter '{key}'.", detail=f"allowed: {_allowed(f)}")

        entries: list[FilterEntry] = []
        for f in self.fields.values():
            for comparison in _COMPARISON_ORDER:
                if comparison not in f.comparisons:
                    continue
                raw = params.get(f"{f.name}[{comparison.value}]")
                if comparison is f.default and not raw:
                    raw = params.get(f.name)
                if not raw:
                    continue
                try:
                    value = f.parse(raw)
                except (TypeError, ValueError) as exc:
                    raise ValidationError(f"Invalid value for filter '{f.name}'.", detail=str(exc)) from exc
                entries.append(FilterEntry(f.name, comparison, value))

        return ListQuery(
            page=_parse_int(params, "page"),
            page_size=_parse_int(params, "page_size"),
            filters=entries,
            sort_by=params.get("sort_by") or None,
        )

    # ------------------------------------------------------------------
    # Statement building
    # ------------------------------------------------------------------

    def apply_filters(self, stmt: Select, entries: Iterable[FilterEntry]) -> Select:
        """Fold each present entry onto *stmt* as an AND-ed WHERE clause."""
        for entry in entries:
            if entry.value is None:
                continue
            f = self.fields.get(entry.field)
            if f is None:
                raise ValidationError(f"Unknown filter field '{entry.field}'.")
            if entry.comparison not in f.comparisons:
                raise ValidationError(
                    f"Comparison '{entry.comparison.value}' is not allowed on '{entry.field}'.",
                    detail=f"allowed: {_allowed(f)}",
                )
            stmt = stmt.where(_OPERATORS[entry.comparison](f.column, entry.value))
        return stmt

    def resolve_sort(self, sort_by: Optional[str]) -> Optional[list[ColumnElement]]:
        """Map `name[.asc|.desc]` to an ORDER BY clause, or None if unrecognised."""
        if not sort_by:
            return None
        name, _, direction = sort_by.strip().partition(".")
        column = self.sortable.get(name)
        if column is None or direction not in ("", "asc", "desc"):
            logger.debug("Ignoring unknown sort key for %s: %r", self.name, sort_by)
            return None
        return [column.desc() if direction == "desc" else column.asc()]

    def build(self, query: ListQuery) -> Select:
        """Filtered and ordered SELECT, without LIMIT/OFFSET."""
        stmt = self.apply_filters(select(self.table), query.filters)
        order = self.resolve_sort(query.sort_by) or []
        return stmt.order_by(*order, *self.default_order)

    def paginate(
        self,
        conn: Connection,
        query: ListQuery,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> Page[T]:
        """Execute *query* and return one page plus pagination metadata."""
        page, size = normalize_paging(query.page, query.page_size, default_page_size, max_page_size)
        stmt = self.build(query)
        total = conn.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()

        offset = (page - 1) * size
        # Past the last page; also keeps huge page numbers out of a 64-bit OFFSET.
        rows = [] if offset >= total else conn.execute(stmt.limit(size).offset(offset)).fetchall()
        return Page(
            items=[self.row_mapper(r) for r in rows],
            total=total,
            total_pages=total_pages_for(total, size),
            page=page,
            page_size=size,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_int(params: Mapping[str, str], key: str) -> Optional[int]:
    raw = params.get(key)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"'{key}' must be an integer.") from exc


def _allowed(f: FilterField) -> str:
    return ", ".join(c.value for c in _COMPARISON_ORDER if c in f.comparisons)
