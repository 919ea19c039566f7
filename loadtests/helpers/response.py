"""Response error extraction for load test observability.

Handles the tracking API's error shapes:

- Pydantic validation (422): {"detail": [{"loc": [...], "msg": "..."}]}
- Invalid transition (422): {"error": {"status": [...]}, "current_status": ..., ...}
- Validation and not found (400/404): {"error": {"field": ["msg"]}}
- Operational failures (401/502/503): {"error": {"code": "...", "message": "..."}}
"""


def extract_error_detail(response) -> str:
    """Compact error message for Locust failure messages and log lines."""
    try:
        body = response.json()
    except ValueError:
        text = getattr(response, "text", "") or ""
        return text[:300] or "(empty response body)"

    if not isinstance(body, dict):
        return str(body)[:300]

    if isinstance(body.get("detail"), list):
        parts = []
        for err in body["detail"]:
            loc = ".".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", str(err))
            parts.append(f"{loc}: {msg}" if loc else msg)
        return " | ".join(parts)

    if "error" in body:
        error = body["error"]
        if isinstance(error, dict) and "code" in error:
            return f"{error['code']}: {error.get('message', '')}"
        if isinstance(error, dict):
            return " | ".join(f"{k}: {v}" for k, v in error.items())
        return str(error)

    return str(body)[:300]
