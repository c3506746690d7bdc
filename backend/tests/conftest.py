"""
Shared test doubles.

FakeCaseStore keeps case rows and auxiliary records in memory and exposes the
same async methods as SupabaseCaseStore. FakeGateway records every send and
returns queued results (successful sends by default).
"""

import copy
import os

import pytest

# Ensure env vars are set before importing anything that triggers app imports
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-payment-secret")


class FakeCaseStore:
    cases_table = "cases"

    def __init__(self, cases=None):
        self.cases = {k: copy.deepcopy(v) for k, v in (cases or {}).items()}
        self.records = {}
        self.failing_collections = set()
        self.fail_case_writes = False
        self.subscriptions = []
        self.unsubscribe_calls = 0
        self.subscribe_error = None

    # case rows

    async def get_case(self, case_id):
        row = self.cases.get(case_id)
        return copy.deepcopy(row) if row is not None else None

    async def set_case(self, case_id, fields, merge=True):
        if self.fail_case_writes:
            raise RuntimeError("case write failed")
        if merge and case_id in self.cases:
            self.cases[case_id].update(copy.deepcopy(fields))
        else:
            self.cases[case_id] = copy.deepcopy(fields)

    async def update_case(self, case_id, fields):
        if self.fail_case_writes:
            raise RuntimeError("case write failed")
        self.cases.setdefault(case_id, {}).update(copy.deepcopy(fields))

    async def ping(self):
        return None

    # auxiliary records

    async def add_record(self, collection, record):
        if collection in self.failing_collections:
            raise RuntimeError(f"{collection} unavailable")
        rows = self.records.setdefault(collection, [])
        record = copy.deepcopy(record)
        record.setdefault("id", f"{collection}-{len(rows) + 1}")
        rows.append(record)
        return record["id"]

    async def get_record(self, collection, record_id):
        for row in self.records.get(collection, []):
            if row.get("id") == record_id:
                return copy.deepcopy(row)
        return None

    async def update_record(self, collection, record_id, fields):
        if collection in self.failing_collections:
            raise RuntimeError(f"{collection} unavailable")
        for row in self.records.get(collection, []):
            if row.get("id") == record_id:
                row.update(copy.deepcopy(fields))

    def records_in(self, collection):
        return self.records.get(collection, [])

    # change feed

    async def subscribe(self, on_change_batch, on_error):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append((on_change_batch, on_error))

        async def unsubscribe():
            self.unsubscribe_calls += 1

        return unsubscribe


class FakeGateway:
    def __init__(self, email_results=None, sms_results=None, sms_enabled=False):
        self.email_results = list(email_results or [])
        self.sms_results = list(sms_results or [])
        self.sms_enabled = sms_enabled
        self.email_calls = []
        self.sms_calls = []

    async def send_email(self, **kwargs):
        self.email_calls.append(kwargs)
        if self.email_results:
            result = self.email_results.pop(0)
        else:
            result = {"success": True, "message_id": f"msg-{len(self.email_calls)}"}
        if isinstance(result, Exception):
            raise result
        return result

    async def send_sms(self, **kwargs):
        self.sms_calls.append(kwargs)
        if not self.sms_enabled:
            return {"success": False, "error": "SMS service not enabled", "disabled": True}
        if self.sms_results:
            result = self.sms_results.pop(0)
        else:
            result = {"success": True, "message_id": f"sms-{len(self.sms_calls)}"}
        if isinstance(result, Exception):
            raise result
        return result


def make_case_row(**overrides):
    """A snake_case case row as written by the intake code."""
    row = {
        "case_status": "approval_pending",
        "payment_status": "pending",
        "status": "completed",
        "email": "client@example.com",
        "extracted_data": {
            "violator_information": {"FIRST": "Jane", "LAST_NAME": "Doe", "PHONE": ""},
            "ticket_header": {"County": "Travis", "CITATION_NUMBER": "TX-1001"},
            "violation": {"CITATION": "Speeding 45/30"},
        },
        "status_history": [
            {"status": "approval_pending", "timestamp": "2026-01-05T10:00:00+00:00", "note": "created"}
        ],
        "client_messages": {"case_dismissed": "Our legal team has won your case."},
    }
    row.update(overrides)
    return row


@pytest.fixture()
def store():
    return FakeCaseStore()


@pytest.fixture()
def gateway():
    return FakeGateway()
