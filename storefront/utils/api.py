# --- storefront/utils/api.py ---
from datetime import datetime, timezone

from flask import jsonify


def _api_time():
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def api_ok(message, data=None):
    return {
        "status": True,
        "message": message,
        "data": {
            **(data or {}),
            "API_TIME_HUMAN": _api_time(),
        },
    }


def api_error(message, data=None):
    return {
        "status": False,
        "message": message,
        "data": {
            **(data or {}),
            "API_TIME_HUMAN": _api_time(),
        },
    }


# ---- response helpers shared by the blueprints ------------------------------
def ok(msg, data=None, status=200):
    r = jsonify(api_ok(msg, data)); r.status_code = status; return r


def err(msg, status=400, data=None):
    r = jsonify(api_error(msg, data)); r.status_code = status; return r


def paginate(query, page, per_page, serialize):
    page = max(_to_int(page, 1), 1)
    per_page = min(max(_to_int(per_page, 10), 1), 100)
    paged = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        "meta": {
            "page": paged.page,
            "pages": paged.pages or 1,
            "per_page": per_page,
            "total": paged.total,
        },
        "items": [serialize(x) for x in paged.items],
    }


def _to_int(v, default=None):
    try:
        return int(v)
    except (TypeError, ValueError):
        return default
