#api.py
import json
from typing import Optional, Tuple, List, Dict, Any

import requests

from config import SESSION
from exceptions import CarrierApiError
from logger import get_logger

log = get_logger("api")

DEFAULT_TIMEOUT = 60


def send_request(
    method: str,
    url: str,
    *,
    auth: Optional[Tuple[str, str]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: int = DEFAULT_TIMEOUT,
    logger=None,
) -> requests.Response:
    logger = logger or log
    hdrs = {"Accept": "application/json"}
    hdrs.update(headers or {})

    if json_body is not None:
        logger.debug(f"{method} {url} payload: {json.dumps(json_body, default=str)}")
    else:
        logger.debug(f"{method} {url} params={params}")

    resp = SESSION.request(
        method,
        url,
        auth=auth,
        json=json_body,
        data=data,
        params=params,
        headers=hdrs,
        timeout=timeout,
    )

    if "json" in (resp.headers.get("Content-Type") or ""):
        logger.debug(f"API Response: {resp.status_code} {resp.text[:2000]}")
    else:
        logger.debug(f"API Response: {resp.status_code} ({resp.headers.get('Content-Type')}, {len(resp.content)} bytes)")
    return resp


def error_messages(resp: requests.Response) -> List[str]:
    """
    Pull human readable messages out of an error body. SendCloud and Stripe
    use a few different shapes: errors[], error.message, message, detail.
    """
    messages: List[str] = []
    try:
        body = resp.json()
    except ValueError:
        text = (resp.text or "").strip()
        return [text[:500]] if text else [f"HTTP {resp.status_code}"]

    if isinstance(body, dict):
        errs = body.get("errors")
        if isinstance(errs, list):
            for e in errs:
                if isinstance(e, dict):
                    field = e.get("field")
                    msg = e.get("message") or e.get("detail") or ""
                    messages.append(f"{field}: {msg}" if field else str(msg))
                else:
                    messages.append(str(e))

        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            messages.append(str(err["message"]))
        elif isinstance(err, str) and err:
            messages.append(err)

        for key in ("message", "detail"):
            if not messages and body.get(key):
                messages.append(str(body[key]))
    elif isinstance(body, str) and body:
        messages.append(body)

    return messages or [f"HTTP {resp.status_code}"]


def json_or_raise(resp: requests.Response, action: str) -> Dict[str, Any]:
    """Return the decoded body of a 2xx carrier response, else raise CarrierApiError."""
    if not resp.ok:
        msgs = error_messages(resp)
        raise CarrierApiError(
            f"{action} failed: {resp.status_code} {'; '.join(msgs)}",
            api_status=resp.status_code,
            api_messages=msgs,
            raw_response_text=resp.text,
        )
    try:
        return resp.json()
    except ValueError as e:
        raise CarrierApiError(
            f"{action} returned non-JSON body: {e}",
            api_status=resp.status_code,
            raw_response_text=resp.text,
        ) from e
