"""
Response Decoder - Shape detection and payload decoding for upstream responses
"""

import io
import json
from enum import Enum
from typing import Any, Dict, List
import pandas as pd
import structlog

from bond_directory.core.exceptions import DecodeError

logger = structlog.get_logger(__name__)

# Keys under which the upstream wraps an array payload
WRAPPER_KEYS = ("data", "result", "content")

ERROR_PAGE_MARKERS = (b"<html", b"<!doctype html")


class ResponseKind(str, Enum):
    """Payload kind an endpoint is expected to return"""
    JSON = "json"
    TABULAR = "tabular-binary"


def looks_like_error_page(content: bytes) -> bool:
    """
    True when a body is an HTML page rather than data.

    The upstream answers 200 with its login page once the session silently
    expires, so this is checked on successful responses too. Only the start of
    the body counts: neither a JSON document nor a workbook begins with '<',
    and markup inside a JSON string value is data.
    """
    head = content[:1024].lstrip().lower()
    if not head.startswith(b"<"):
        return False
    return head.startswith(b"<!doctype") or any(marker in head for marker in ERROR_PAGE_MARKERS)


def unwrap_json(payload: Any) -> List[Dict[str, Any]]:
    """Normalize a JSON payload into a list of records"""
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in WRAPPER_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]
        return [payload]
    raise DecodeError(
        "JSON payload is neither an array nor an object",
        details={"payload_type": type(payload).__name__}
    )


def decode_json(content: bytes) -> List[Dict[str, Any]]:
    if not content or not content.strip():
        return []
    try:
        payload = json.loads(content)
    except ValueError as e:
        raise DecodeError("Malformed JSON payload", details={"error": str(e)}) from e
    return unwrap_json(payload)


def decode_spreadsheet(content: bytes) -> List[Dict[str, Any]]:
    """Decode the first sheet of a spreadsheet payload into row records"""
    if not content:
        return []
    try:
        frame = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=object)
    except Exception as e:
        raise DecodeError(
            "Spreadsheet payload could not be decoded",
            details={"error": str(e), "error_type": type(e).__name__}
        ) from e

    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.dropna(how="all")
    frame = frame.astype(object).where(pd.notna(frame), None)
    records = frame.to_dict(orient="records")

    logger.debug("Spreadsheet decoded",
                rows=len(records),
                columns=list(frame.columns))
    return records


def decode_response(content: bytes, kind: ResponseKind) -> List[Dict[str, Any]]:
    """Decode a successful response body according to its expected kind"""
    if kind == ResponseKind.TABULAR:
        return decode_spreadsheet(content)
    return decode_json(content)
