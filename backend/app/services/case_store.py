"""
Case store backed by Supabase.

Document-level access to case rows and the auxiliary record tables
(audit-logs, notification_logs, admin_alerts, scheduled_review_emails), plus
a change feed built on Supabase Realtime.

Change feed
-----------
Realtime delivers one postgres change per callback. Each is converted to a
one-element batch of DocumentChange so consumers see the same
``on_change_batch(list[DocumentChange])`` contract regardless of backend.
``previous`` is only populated when the table has REPLICA IDENTITY FULL.

Environment variables
---------------------
CASES_TABLE   Name of the cases table (default: "cases").
"""

import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic_core import to_jsonable_python

from app.models.notifications import ChangeType, DocumentChange

logger = logging.getLogger(__name__)

ChangeBatchHandler = Callable[[List[DocumentChange]], None]
ErrorHandler = Callable[[Exception], None]
Unsubscribe = Callable[[], Awaitable[None]]

AUDIT_LOGS = "audit-logs"
ADMIN_ALERTS = "admin_alerts"
NOTIFICATION_LOGS = "notification_logs"
SCHEDULED_REVIEW_EMAILS = "scheduled_review_emails"

_EVENT_TYPES = {
    "INSERT": ChangeType.ADDED,
    "UPDATE": ChangeType.MODIFIED,
    "DELETE": ChangeType.REMOVED,
}

_FAILED_CHANNEL_STATES = {"CHANNEL_ERROR", "TIMED_OUT"}


def payload_to_change(payload: Dict[str, Any]) -> Optional[DocumentChange]:
    """
    Convert a Realtime postgres_changes payload into a DocumentChange.

    Accepts both the wire shape ({"data": {"type", "record", "old_record"}})
    and the flattened client shape ({"eventType", "new", "old"}).
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    event = data.get("type") or data.get("eventType")
    change_type = _EVENT_TYPES.get(str(event).upper()) if event else None
    if change_type is None:
        logger.debug("Ignoring realtime payload with event %r", event)
        return None

    record = data.get("record") or data.get("new") or {}
    old_record = data.get("old_record") or data.get("old") or None
    case_id = record.get("id") or (old_record or {}).get("id")
    if not case_id:
        logger.warning("Realtime %s payload has no row id; ignoring", event)
        return None

    return DocumentChange(
        type=change_type,
        case_id=str(case_id),
        data=record,
        previous=old_record,
    )


class SupabaseCaseStore:
    """Case store over an async Supabase client."""

    def __init__(self, client, cases_table: Optional[str] = None, schema: str = "public"):
        self.client = client
        self.cases_table = cases_table or os.getenv("CASES_TABLE", "cases")
        self.schema = schema

    # ------------------------------------------------------------------
    # Case rows
    # ------------------------------------------------------------------

    async def get_case(self, case_id: str) -> Optional[dict]:
        result = await (
            self.client.table(self.cases_table)
            .select("*")
            .eq("id", case_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return result.data[0]

    async def set_case(self, case_id: str, fields: dict, merge: bool = True) -> None:
        """
        Write a case row.

        merge=True upserts only the given columns; merge=False replaces the
        row so columns not in ``fields`` fall back to their defaults.
        """
        row = to_jsonable_python({**fields, "id": case_id})
        if merge:
            await self.client.table(self.cases_table).upsert(row).execute()
            return
        await self.client.table(self.cases_table).delete().eq("id", case_id).execute()
        await self.client.table(self.cases_table).insert(row).execute()

    async def update_case(self, case_id: str, fields: dict) -> None:
        await self.client.table(self.cases_table).update(to_jsonable_python(fields)).eq("id", case_id).execute()

    # ------------------------------------------------------------------
    # Auxiliary record tables
    # ------------------------------------------------------------------

    async def add_record(self, collection: str, record: dict) -> Optional[str]:
        """Insert a record and return its id when the table reports one."""
        result = await self.client.table(collection).insert(to_jsonable_python(record)).execute()
        if result.data:
            return result.data[0].get("id")
        return record.get("id")

    async def get_record(self, collection: str, record_id: str) -> Optional[dict]:
        result = await (
            self.client.table(collection)
            .select("*")
            .eq("id", record_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return result.data[0]

    async def update_record(self, collection: str, record_id: str, fields: dict) -> None:
        await self.client.table(collection).update(to_jsonable_python(fields)).eq("id", record_id).execute()

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        on_change_batch: ChangeBatchHandler,
        on_error: ErrorHandler,
    ) -> Unsubscribe:
        """
        Subscribe to row changes on the cases table.

        on_change_batch is called synchronously from the realtime listener and
        must not block. on_error is called when the channel fails.
        """
        channel = self.client.channel(f"{self.cases_table}-changes")

        def _on_change(payload: Dict[str, Any]) -> None:
            change = payload_to_change(payload)
            if change is not None:
                on_change_batch([change])

        def _on_status(status: Any, err: Optional[Exception] = None) -> None:
            state = getattr(status, "value", status)
            if state in _FAILED_CHANNEL_STATES:
                on_error(err or RuntimeError(f"Realtime channel {state}"))
            else:
                logger.info("Realtime channel %s: %s", self.cases_table, state)

        channel.on_postgres_changes(
            "*",
            schema=self.schema,
            table=self.cases_table,
            callback=_on_change,
        )
        await channel.subscribe(_on_status)

        async def unsubscribe() -> None:
            await self.client.remove_channel(channel)

        return unsubscribe

    async def ping(self) -> None:
        """Run a one-row select against the cases table; raises if unreachable."""
        await self.client.table(self.cases_table).select("id").limit(1).execute()
