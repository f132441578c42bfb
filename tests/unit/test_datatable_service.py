from __future__ import annotations

import pytest

from rbac_panel.services import datatable_service

ROWS = [
    {"id": "1", "name": "admin", "permissions_count": 20},
    {"id": "2", "name": "user", "permissions_count": 0},
    {"id": "3", "name": "Editor", "permissions_count": 4},
    {"id": "4", "name": "auditor", "permissions_count": 2},
]


@pytest.mark.unit
def test_parse_request_defaults_and_limits() -> None:
    table = datatable_service.parse_request({"draw": "x", "start": "-5", "length": "100000"})

    assert table.draw == 0
    assert table.start == 0
    assert table.length == 100
    assert table.search == ""
    assert table.order_column is None
    assert table.order_dir == "asc"


@pytest.mark.unit
def test_parse_request_reads_order_column_name() -> None:
    table = datatable_service.parse_request(
        {
            "draw": "3",
            "start": "10",
            "length": "25",
            "search[value]": "  edi ",
            "order[0][column]": "1",
            "order[0][dir]": "DESC",
            "columns[1][data]": "permissions_count",
        }
    )

    assert (table.draw, table.start, table.length) == (3, 10, 25)
    assert table.search == "edi"
    assert table.order_column == "permissions_count"
    assert table.order_dir == "desc"


@pytest.mark.unit
def test_build_response_searches_sorts_and_pages() -> None:
    table = datatable_service.parse_request(
        {
            "draw": "7",
            "start": "0",
            "length": "2",
            "order[0][column]": "0",
            "order[0][dir]": "asc",
            "columns[0][data]": "name",
        }
    )

    payload = datatable_service.build_response(table, ROWS, search_fields=("name",))

    assert payload["draw"] == 7
    assert payload["recordsTotal"] == 4
    assert payload["recordsFiltered"] == 4
    assert [row["name"] for row in payload["data"]] == ["admin", "auditor"]


@pytest.mark.unit
def test_build_response_search_is_case_insensitive() -> None:
    table = datatable_service.parse_request({"search[value]": "EDIT"})

    payload = datatable_service.build_response(table, ROWS, search_fields=("name",))

    assert payload["recordsTotal"] == 4
    assert payload["recordsFiltered"] == 1
    assert payload["data"][0]["id"] == "3"


@pytest.mark.unit
def test_build_response_uses_custom_row_filter() -> None:
    table = datatable_service.parse_request({"search[value]": "zero"})

    payload = datatable_service.build_response(
        table,
        ROWS,
        search_fields=("name",),
        row_filter=lambda row, keyword: keyword == "zero" and row["permissions_count"] == 0,
    )

    assert [row["id"] for row in payload["data"]] == ["2"]
