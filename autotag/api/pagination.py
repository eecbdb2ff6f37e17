from __future__ import annotations

import base64
import json
from dataclasses import dataclass

from autotag.api.errors import APIError


class CursorError(ValueError):
    pass


@dataclass(frozen=True)
class Cursor:
    """Keyset position in a (created_at, id) ordered listing."""

    created_at: float
    item_id: str

    def as_tuple(self) -> tuple[float, str]:
        return (self.created_at, self.item_id)


def encode_cursor(cursor: Cursor) -> str:
    raw = json.dumps({"created_at": cursor.created_at, "id": cursor.item_id}, separators=(",", ":")).encode(
        "utf-8"
    )
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(value: str) -> Cursor:
    s = (value or "").strip()
    if not s:
        raise CursorError("Empty cursor")

    pad = "=" * ((4 - (len(s) % 4)) % 4)
    try:
        raw = base64.urlsafe_b64decode((s + pad).encode("ascii")).decode("utf-8")
        obj = json.loads(raw)
        return Cursor(created_at=float(obj["created_at"]), item_id=str(obj["id"]))
    except Exception as e:
        raise CursorError("Invalid cursor") from e


def parse_cursor_param(value: str | None) -> tuple[float, str] | None:
    """Decode an optional `cursor` query parameter, mapping bad input to a 400."""
    if not value:
        return None
    try:
        return decode_cursor(value).as_tuple()
    except CursorError as e:
        raise APIError(status_code=400, code="invalid_argument", message=str(e)) from e


def encode_next_cursor(page: dict) -> dict:
    """Replace a store page's raw `next_cursor` tuple with its opaque string form."""
    next_cursor = page.get("next_cursor")
    if next_cursor is not None:
        created_at, item_id = next_cursor
        page["next_cursor"] = encode_cursor(Cursor(created_at=float(created_at), item_id=str(item_id)))
    return page
