# api_utils.py
import json
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence
from fastapi import Query
from fastapi.responses import JSONResponse
from tortoise.queryset import QuerySet

from services import config
from services.errors import InvalidInputError

# ---------- React-Admin param parsing ----------
def parse_range(range_param: str | None) -> tuple[int, int]:
    if not range_param:
        return 0, config.DEFAULT_PAGE_SIZE
    try:
        start, end = json.loads(range_param)
        skip, end = int(start), int(end)
    except (ValueError, TypeError):
        raise InvalidInputError("range must look like [start, end]")
    if skip < 0 or end < skip:
        raise InvalidInputError("range must look like [start, end] with 0 <= start <= end")
    limit = min(end - skip + 1, config.MAX_PAGE_SIZE)
    return skip, limit

def parse_sort(sort_param: str, allowed_fields: Iterable[str], default: str = "id") -> str:
    allowed = set(allowed_fields) | {"id"}
    try:
        field, order = json.loads(sort_param)
    except (ValueError, TypeError):
        return default
    if field not in allowed:
        return default
    prefix = "-" if str(order).upper() == "DESC" else ""
    return f"{prefix}{field}"

def parse_filter(filter_param: str | None) -> dict:
    try:
        filters = json.loads(filter_param or "{}")
    except ValueError:
        raise InvalidInputError("filter must be a JSON object")
    if not isinstance(filters, dict):
        raise InvalidInputError("filter must be a JSON object")
    return filters

def parse_dt(value: Any) -> datetime:
    """ISO-8601 filter value -> aware UTC datetime (naive taken as UTC)."""
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInputError(f"Invalid datetime: {value!r}")
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)

# ---------- Query helpers ----------
def apply_filter_map(qs: QuerySet, filters: dict, fmap: dict[str, Callable[[QuerySet, Any], QuerySet]]) -> QuerySet:
    for key, fn in fmap.items():
        if key in filters and filters[key] is not None:
            qs = fn(qs, filters[key])
    return qs

def _list_response(content: list, skip: int, total: int) -> JSONResponse:
    end_real = skip + max(len(content) - 1, 0)
    return JSONResponse(
        status_code=206,
        content=content,
        headers={
            "Content-Range": f"items {skip}-{end_real}/{total}",
            "X-Total-Count": str(total),
        },
    )

async def paginate_and_respond(
    qs: QuerySet,
    skip: int,
    limit: int,
    order: str,
    to_pydantic: Callable[[Any], Any],
) -> JSONResponse:
    total = await qs.count()
    items = await qs.order_by(order).offset(skip).limit(limit)
    # pydantic JSON mode keeps UUID / datetime / Decimal safe
    content = [to_pydantic(it).model_dump(mode="json") for it in items]
    return _list_response(content, skip, total)

def respond_list(items: Sequence[Any], to_pydantic: Callable[[Any], Any]) -> JSONResponse:
    """Unpaginated list with the same headers, for short bounded collections."""
    content = [to_pydantic(it).model_dump(mode="json") for it in items]
    return _list_response(content, 0, len(content))

def respond_item(model_obj: Any, to_pydantic: Callable[[Any], Any], status_code: int = 200) -> JSONResponse:
    """Single item response that uses the same Pydantic-safe encoding."""
    return JSONResponse(status_code=status_code, content=to_pydantic(model_obj).model_dump(mode="json"))

# ---------- RA params container ----------
class RAListParams:
    def __init__(
        self,
        range: str | None = Query(None),
        sort: str = Query('["id","ASC"]'),
        filter: str = Query("{}"),
    ):
        self.skip, self.limit = parse_range(range)
        self.filters = parse_filter(filter)
        self.sort = sort
