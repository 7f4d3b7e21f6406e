"""
Pytest configuration and fixtures

No live database is needed: the source side is faked at the connector/stream
seam and the destination side at the loader or session seam.
"""

import pytest
from typing import Any, Dict, List, Optional, Set
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.exc import IntegrityError
from core.config import Settings
from core.exceptions import SourceStreamError
from migration.loaders.postgres_loader import WriteResult
from migration.registry import MigrationStatusRegistry


# ============================================================================
# Source fakes
# ============================================================================

class FakeRowStream:
    """In-memory stand-in for SourceRowStream with the same flow-control contract"""

    def __init__(self, rows: List[Dict[str, Any]], fail_after: Optional[int] = None):
        self.rows = list(rows)
        self.fail_after = fail_after
        self.position = 0
        self.paused = False
        self.closed = False
        self.pause_calls = 0
        self.resume_calls = 0

    def pause(self):
        self.paused = True
        self.pause_calls += 1

    def resume(self):
        self.paused = False
        self.resume_calls += 1

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.paused:
            raise SourceStreamError("Read attempted while the stream is paused")
        if self.fail_after is not None and self.position >= self.fail_after:
            raise SourceStreamError("Source cursor failed while streaming",
                                    original_exception=RuntimeError("connection reset"))
        if self.position >= len(self.rows):
            raise StopAsyncIteration
        row = self.rows[self.position]
        self.position += 1
        return row

    async def close(self):
        self.closed = True


class FakeConnector:
    """Connector whose stream() hands out FakeRowStreams in order"""

    def __init__(self, streams: Optional[List[FakeRowStream]] = None):
        self.streams = list(streams or [])
        self.opened_streams: List[FakeRowStream] = []
        self.open_async = AsyncMock()
        self.close = MagicMock()

    async def stream(self, query, params=None, fetch_size=None):
        stream = self.streams.pop(0)
        self.opened_streams.append(stream)
        return stream


class FakeWriter:
    """Records every batch; rows whose ``id`` is in ``bad_ids`` fail"""

    def __init__(self, bad_ids: Optional[Set[Any]] = None, raise_on_call: Optional[int] = None):
        self.bad_ids = set(bad_ids or ())
        self.raise_on_call = raise_on_call
        self.calls: List[List[Dict[str, Any]]] = []
        self.modes: List[str] = []

    def _write(self, records):
        self.calls.append(list(records))
        if self.raise_on_call is not None and len(self.calls) == self.raise_on_call:
            raise RuntimeError("destination unavailable")
        failed = sum(1 for r in records if r.get("id") in self.bad_ids)
        return WriteResult(succeeded=len(records) - failed, failed=failed)

    async def insert_rows(self, target, records, record_refs=None):
        self.modes.append("insert")
        return self._write(records)

    async def update_rows(self, target, records, key_columns, record_refs=None):
        self.modes.append("update")
        return self._write(records)


# ============================================================================
# Destination session fakes
# ============================================================================

class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    AsyncSession stand-in. Calls listed in ``failing_calls`` (1-based) raise
    an IntegrityError, as a unique or check violation would.
    """

    def __init__(self, failing_calls: Optional[Set[int]] = None):
        self.failing_calls = set(failing_calls or ())
        self.executed = []
        self.added = []
        self.commit = AsyncMock()
        self.nested_count = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def begin(self):
        return FakeTransaction()

    def begin_nested(self):
        self.nested_count += 1
        return FakeTransaction()

    async def execute(self, stmt):
        self.executed.append(stmt)
        if len(self.executed) in self.failing_calls:
            raise IntegrityError("INSERT", {}, Exception("violates check constraint"))
        return MagicMock()

    def add(self, obj):
        self.added.append(obj)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings with defaults, isolated from any local .env"""
    return Settings(_env_file=None)


@pytest.fixture
def registry():
    return MigrationStatusRegistry(retention_seconds=300)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def ledger_row():
    """A GeneralLedger row as pyodbc returns it"""
    from datetime import datetime
    from decimal import Decimal

    return {
        "TenantCode": 5,
        "TenantName": "Acme LLC",
        "Abonent": "ACME",
        "PostingsPeriod": datetime(2024, 3, 31),
        "Register": bytes.fromhex("00112233445566778899aabbccddeeff"),
        "Branch": "Main",
        "Content": "Salary accrual",
        "ResponsiblePerson": "N. Beridze",
        "AccountDr": "7410",
        "AccountNameDr": "Salary expense",
        "AnalyticDr": None,
        "AnalyticRefDr": None,
        "IDDr": "01001001",
        "LegalFormDr": "LLC",
        "CountryDr": "GE",
        "ProfitTaxDr": b"\x01",
        "WithholdingTaxDr": b"\x00",
        "DoubleTaxationDr": None,
        "PensionSchemeParticipantDr": b"\x01",
        "AccountCr": "3130",
        "AccountNameCr": "Salary payable",
        "AnalyticCr": None,
        "AnalyticRefCr": b"\xab\xcd",
        "IDCr": None,
        "LegalFormCr": None,
        "CountryCr": None,
        "ProfitTaxCr": b"\x00",
        "WithholdingTaxCr": b"\x00",
        "DoubleTaxationCr": b"\x00",
        "PensionSchemeParticipantCr": b"\x00",
        "Currency": "GEL",
        "Amount": Decimal("1500.00"),
        "AmountCur": Decimal("1500.00"),
        "QuantityDr": None,
        "QuantityCr": None,
        "Rate": Decimal("1"),
        "DocumentRate": None,
        "TAXInvoiceNumber": None,
        "TAXInvoiceDate": None,
        "TAXInvoiceSeries": None,
        "WaybillNumber": None,
        "AttachedFiles": 0,
        "DocType": "PAY",
        "DocDate": datetime(2024, 3, 31),
        "DocNumber": "PAY-0001",
        "DocumentCreationDate": datetime(2024, 3, 31, 9, 0),
        "DocumentModifyDate": None,
        "DocumentComments": None,
        "PostingNumber": 1,
    }
