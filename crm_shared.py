from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Optional

import azure.functions as func


def parse_json_body(req: func.HttpRequest) -> dict:
    try:
        body = req.get_json()
    except ValueError:
        body = None
    return body if isinstance(body, dict) else {}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def json_response(payload: Any, cors: dict, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(payload, default=_json_default),
        status_code=status_code,
        mimetype="application/json",
        headers=cors,
    )


def error_response(message: str, cors: dict, status_code: int) -> func.HttpResponse:
    return json_response({"error": message}, cors, status_code=status_code)


def preflight_response(cors: dict) -> func.HttpResponse:
    return func.HttpResponse("", status_code=204, headers=cors)


def extract_bearer_token(req: func.HttpRequest) -> str:
    auth_header = str(req.headers.get("Authorization") or req.headers.get("authorization") or "").strip()
    if not auth_header:
        return ""
    parts = auth_header.split(" ", 1)
    if len(parts) == 2 and parts[0].strip().lower() == "bearer":
        return parts[1].strip()
    return auth_header


def get_client_ip(req: func.HttpRequest) -> Optional[str]:
    forwarded_for = req.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or None
    return None


def format_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return value.isoformat()
