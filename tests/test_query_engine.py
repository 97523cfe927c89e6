"""Unit tests for query/engine.py.

Covers:
- Zero filters -> full set, default (primary key) order, first page
- Two filters -> intersection of the single-filter results
- Entries with value None are no-ops
- Sort whitelist: asc/desc, unknown keys fall back to the default order
- Pagination math: ceil(N / S), page past the end is empty, size clamping
- parse_params: bracket keys, defaults, and validation errors
- USER_RESOURCE wiring over the real users table

The engine is exercised against a throwaway `widgets` table so the tests
also show it is not tied to users.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table

from auth.store import USER_RESOURCE, UserStore
from core.database import Database, UTCDateTime
from core.errors import ValidationError
from query.engine import (
    Comparison,
    FilterEntry,
    FilterField,
    ListQuery,
    Resource,
    normalize_paging,
    parse_datetime,
    total_pages_for,
)

_meta = MetaData()
_widgets = Table(
    "widgets",
    _meta,
    Column("id", Integer, primary_key=True),
    Column("name", String(50), nullable=False),
    Column("colour", String(20), nullable=False),
    Column("made_at", UTCDateTime, nullable=False),
)

_BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)

# id, name, colour, day offset
_ROWS = [
    (1, "alpha", "red", 0),
    (2, "bravo", "blue", 1),
    (3, "charlie", "red", 2),
    (4, "delta", "green", 3),
    (5, "echo", "red", 4),
    (6, "foxtrot", "blue", 5),
    (7, "golf", "red", 6),
]

WIDGETS = Resource(
    name="widgets",
    table=_widgets,
    fields=[
        FilterField(
            "name",
            _widgets.c.name,
            comparisons=frozenset({Comparison.EQ, Comparison.LIKE}),
            default=Comparison.LIKE,
        ),
        FilterField("colour", _widgets.c.colour),
        FilterField(
            "made_at",
            _widgets.c.made_at,
            parse=parse_datetime,
            comparisons=frozenset({Comparison.GTE, Comparison.LTE}),
            default=Comparison.GTE,
        ),
    ],
    sortable={"id": _widgets.c.id, "name": _widgets.c.name, "made_at": _widgets.c.made_at},
    row_mapper=lambda row: row.id,
)


@pytest.fixture()
def widget_db(db: Database) -> Database:
    db.create_table(_widgets)
    with db.transaction() as conn:
        conn.execute(
            _widgets.insert(),
            [
                {"id": i, "name": n, "colour": c, "made_at": _BASE + timedelta(days=d)}
                for i, n, c, d in _ROWS
            ],
        )
    return db


def _ids(db: Database, query: ListQuery, default_size: int = 10) -> list[int]:
    with db.connect() as conn:
        return WIDGETS.paginate(conn, query, default_page_size=default_size).items


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


class TestFiltering:
    def test_no_filters_returns_first_page_in_default_order(self, widget_db: Database) -> None:
        with widget_db.connect() as conn:
            page = WIDGETS.paginate(conn, ListQuery(), default_page_size=5)
        assert page.items == [1, 2, 3, 4, 5]
        assert page.total == 7
        assert page.total_pages == 2
        assert page.page == 1

    def test_equality_filter(self, widget_db: Database) -> None:
        q = ListQuery(filters=[FilterEntry("colour", Comparison.EQ, "red")])
        assert _ids(widget_db, q) == [1, 3, 5, 7]

    def test_like_filter(self, widget_db: Database) -> None:
        q = ListQuery(filters=[FilterEntry("name", Comparison.LIKE, "%o%")])
        assert _ids(widget_db, q) == [2, 5, 6, 7]

    def test_range_filter_is_inclusive(self, widget_db: Database) -> None:
        q = ListQuery(
            filters=[
                FilterEntry("made_at", Comparison.GTE, _BASE + timedelta(days=2)),
                FilterEntry("made_at", Comparison.LTE, _BASE + timedelta(days=4)),
            ]
        )
        assert _ids(widget_db, q) == [3, 4, 5]

    def test_two_filters_intersect(self, widget_db: Database) -> None:
        colour = FilterEntry("colour", Comparison.EQ, "red")
        since = FilterEntry("made_at", Comparison.GTE, _BASE + timedelta(days=3))
        only_colour = set(_ids(widget_db, ListQuery(filters=[colour])))
        only_since = set(_ids(widget_db, ListQuery(filters=[since])))
        both = _ids(widget_db, ListQuery(filters=[colour, since]))
        assert set(both) == only_colour & only_since == {5, 7}

    def test_none_value_is_noop(self, widget_db: Database) -> None:
        q = ListQuery(filters=[FilterEntry("colour", Comparison.EQ, None)])
        assert _ids(widget_db, q) == [1, 2, 3, 4, 5, 6, 7]

    def test_unknown_field_rejected(self, widget_db: Database) -> None:
        q = ListQuery(filters=[FilterEntry("weight", Comparison.EQ, 3)])
        with pytest.raises(ValidationError):
            _ids(widget_db, q)

    def test_disallowed_comparison_rejected(self, widget_db: Database) -> None:
        q = ListQuery(filters=[FilterEntry("colour", Comparison.GTE, "red")])
        with pytest.raises(ValidationError):
            _ids(widget_db, q)


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


class TestSorting:
    def test_sort_desc(self, widget_db: Database) -> None:
        assert _ids(widget_db, ListQuery(sort_by="made_at.desc")) == [7, 6, 5, 4, 3, 2, 1]

    def test_sort_bare_name_is_ascending(self, widget_db: Database) -> None:
        assert _ids(widget_db, ListQuery(sort_by="name")) == [1, 2, 3, 4, 5, 6, 7]

    @pytest.mark.parametrize("sort_by", ["colour", "weight.desc", "name.sideways", "id; DROP TABLE widgets"])
    def test_unknown_sort_falls_back_to_default(self, widget_db: Database, sort_by: str) -> None:
        assert WIDGETS.resolve_sort(sort_by) is None
        assert _ids(widget_db, ListQuery(sort_by=sort_by)) == [1, 2, 3, 4, 5, 6, 7]

    def test_sort_and_filter_combine(self, widget_db: Database) -> None:
        q = ListQuery(filters=[FilterEntry("colour", Comparison.EQ, "blue")], sort_by="id.desc")
        assert _ids(widget_db, q) == [6, 2]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class TestPagination:
    @pytest.mark.parametrize(("total", "size", "pages"), [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2), (7, 3, 3)])
    def test_total_pages(self, total: int, size: int, pages: int) -> None:
        assert total_pages_for(total, size) == pages

    def test_last_partial_page(self, widget_db: Database) -> None:
        with widget_db.connect() as conn:
            page = WIDGETS.paginate(conn, ListQuery(page=3, page_size=3))
        assert page.items == [7]
        assert page.total_pages == 3

    def test_page_past_end_is_empty(self, widget_db: Database) -> None:
        with widget_db.connect() as conn:
            page = WIDGETS.paginate(conn, ListQuery(page=9, page_size=3))
        assert page.items == []
        assert page.total == 7

    def test_page_beyond_offset_range_is_empty(self, widget_db: Database) -> None:
        with widget_db.connect() as conn:
            page = WIDGETS.paginate(conn, ListQuery(page=10**19, page_size=3))
        assert page.items == []
        assert page.total == 7
        assert page.page == 10**19

    def test_filtered_total_counts_matches_only(self, widget_db: Database) -> None:
        q = ListQuery(page_size=2, filters=[FilterEntry("colour", Comparison.EQ, "red")])
        with widget_db.connect() as conn:
            page = WIDGETS.paginate(conn, q)
        assert page.total == 4
        assert page.total_pages == 2

    def test_normalize_paging(self) -> None:
        assert normalize_paging(None, None) == (1, 10)
        assert normalize_paging(0, -5) == (1, 10)
        assert normalize_paging(3, 500) == (3, 100)
        assert normalize_paging(2, 25, default_page_size=20, max_page_size=50) == (2, 25)


# ---------------------------------------------------------------------------
# Query-string parsing
# ---------------------------------------------------------------------------


class TestParseParams:
    def test_bare_key_uses_default_comparison(self) -> None:
        q = WIDGETS.parse_params({"name": "%a%"})
        assert q.filters == [FilterEntry("name", Comparison.LIKE, "%a%")]

    def test_bracket_keys_in_declaration_order(self) -> None:
        q = WIDGETS.parse_params(
            {
                "made_at[lte]": "2024-01-05T00:00:00Z",
                "colour": "red",
                "made_at[gte]": "2024-01-02T00:00:00+00:00",
            }
        )
        assert [(f.field, f.comparison) for f in q.filters] == [
            ("colour", Comparison.EQ),
            ("made_at", Comparison.GTE),
            ("made_at", Comparison.LTE),
        ]
        assert q.filters[2].value == datetime(2024, 1, 5, tzinfo=timezone.utc)

    def test_paging_and_sort(self) -> None:
        q = WIDGETS.parse_params({"page": "2", "page_size": "5", "sort_by": "name.desc"})
        assert (q.page, q.page_size, q.sort_by) == (2, 5, "name.desc")

    def test_empty_values_are_absent(self) -> None:
        q = WIDGETS.parse_params({"colour": "", "page": "", "sort_by": ""})
        assert q == ListQuery()

    def test_unknown_keys_ignored(self) -> None:
        assert WIDGETS.parse_params({"weight[gte]": "3", "foo": "bar"}) == ListQuery()

    def test_bad_datetime_rejected(self) -> None:
        with pytest.raises(ValidationError):
            WIDGETS.parse_params({"made_at[gte]": "yesterday"})

    def test_disallowed_bracket_comparison_rejected(self) -> None:
        with pytest.raises(ValidationError):
            WIDGETS.parse_params({"colour[like]": "r%"})

    def test_non_integer_page_rejected(self) -> None:
        with pytest.raises(ValidationError):
            WIDGETS.parse_params({"page": "two"})

    def test_default_comparison_must_be_allowed(self) -> None:
        with pytest.raises(ValueError):
            FilterField("x", _widgets.c.name, comparisons=frozenset({Comparison.EQ}), default=Comparison.LIKE)


# ---------------------------------------------------------------------------
# Users resource
# ---------------------------------------------------------------------------


class TestUserResource:
    def test_list_users_email_like_and_sort(self, user_store: UserStore) -> None:
        for email in ("carol@x.com", "alice@x.com", "bob@y.com"):
            user_store.create_user(email, "p")
        page = user_store.list_users(USER_RESOURCE.parse_params({"email": "%@x.com", "sort_by": "email.asc"}))
        assert [u.email for u in page.items] == ["alice@x.com", "carol@x.com"]
        assert page.total == 2

    def test_list_users_created_at_range(self, user_store: UserStore) -> None:
        user_store.create_user("early@x.com", "p")
        future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        page = user_store.list_users(USER_RESOURCE.parse_params({"created_at[gte]": future}))
        assert page.items == []
        assert page.total_pages == 0
