from __future__ import annotations

from typing import Any, Mapping

from pipelines.change_feed import ChangeEvent, ChangeKind


class WebhookPayloadError(ValueError):
    pass


def change_event_from_webhook(payload: Mapping[str, Any]) -> ChangeEvent:
    """
    Convert a Supabase database webhook body into a ChangeEvent.

    Body shape: {"type": "INSERT"|"UPDATE"|"DELETE", "table": str, "schema": str,
    "record": {...}|null, "old_record": {...}|null}. Only the table and the change
    type are used; row contents are ignored.
    """
    if not isinstance(payload, Mapping):
        raise WebhookPayloadError("Webhook payload must be a JSON object.")

    table = payload.get("table")
    if not isinstance(table, str) or not table.strip():
        raise WebhookPayloadError("Webhook payload is missing 'table'.")

    raw_type = payload.get("type")
    kind = ChangeKind.ANY
    if isinstance(raw_type, str) and raw_type.strip():
        try:
            kind = ChangeKind(raw_type.strip().upper())
        except ValueError as exc:
            raise WebhookPayloadError(f"Unknown webhook change type '{raw_type}'.") from exc

    return ChangeEvent(collection=table.strip(), kind=kind)
