"""DataTables 服务端分页协议。

请求参数：draw、start、length、search[value]、order[0][column]、order[0][dir]、
columns[i][data]；响应：draw、recordsTotal、recordsFiltered、data。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from rbac_panel.config import DATATABLE_MAX_LENGTH


@dataclass(frozen=True, slots=True)
class DataTableRequest:
    draw: int
    start: int
    length: int
    search: str
    order_column: str | None
    order_dir: str


def _to_int(value: Any, default: int, *, minimum: int = 0) -> int:
    try:
        parsed = int(str(value))
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def parse_request(params: Mapping[str, Any], *, default_length: int = 10) -> DataTableRequest:
    """解析 DataTables 查询参数，非法值回退默认值。"""

    length = _to_int(params.get("length"), default_length, minimum=1)
    order_column: str | None = None
    column_index = params.get("order[0][column]")
    if column_index is not None:
        order_column = str(params.get(f"columns[{column_index}][data]") or "").strip() or None

    order_dir = str(params.get("order[0][dir]") or "asc").strip().lower()
    if order_dir not in {"asc", "desc"}:
        order_dir = "asc"

    return DataTableRequest(
        draw=_to_int(params.get("draw"), 0),
        start=_to_int(params.get("start"), 0),
        length=min(length, DATATABLE_MAX_LENGTH),
        search=str(params.get("search[value]") or "").strip(),
        order_column=order_column,
        order_dir=order_dir,
    )


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None:
        return (1, "")
    if isinstance(value, str):
        return (0, value.lower())
    return (0, value)


def build_response(
    table: DataTableRequest,
    rows: list[dict[str, Any]],
    *,
    search_fields: tuple[str, ...],
    total: int | None = None,
    row_filter: Callable[[dict[str, Any], str], bool] | None = None,
) -> dict[str, Any]:
    """在内存中完成搜索、排序与分页。"""

    filtered = rows
    if table.search:
        keyword = table.search.lower()
        if row_filter is not None:
            filtered = [row for row in filtered if row_filter(row, keyword)]
        else:
            filtered = [
                row
                for row in filtered
                if any(keyword in str(row.get(field_name) or "").lower() for field_name in search_fields)
            ]

    if table.order_column and filtered and table.order_column in filtered[0]:
        filtered = sorted(
            filtered,
            key=lambda row: _sort_key(row.get(table.order_column or "")),
            reverse=table.order_dir == "desc",
        )

    page = filtered[table.start : table.start + table.length]
    return {
        "draw": table.draw,
        "recordsTotal": len(rows) if total is None else total,
        "recordsFiltered": len(filtered),
        "data": page,
    }
