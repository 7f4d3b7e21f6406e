"""
Fixed mapping from the legacy GeneralLedger table to journal_entries.

Each source row becomes one journal entry owned by the destination company.
The entry number is synthesized from the tenant code and the row's 1-based
position in the ordered source stream, which also makes it the natural key
used by the incremental update.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime

from migration.transformers.translator import (
    convert_binary_to_boolean,
    convert_binary_to_hex,
    convert_decimal,
    qualified_source_name,
    translate_column_name,
)

LEDGER_TABLE = "GeneralLedger"
JOURNAL_ENTRIES_TABLE = "journal_entries"

LEDGER_COLUMNS: List[str] = [
    "TenantCode", "TenantName", "Abonent", "PostingsPeriod", "Register", "Branch",
    "Content", "ResponsiblePerson",
    "AccountDr", "AccountNameDr", "AnalyticDr", "AnalyticRefDr", "IDDr",
    "LegalFormDr", "CountryDr", "ProfitTaxDr", "WithholdingTaxDr",
    "DoubleTaxationDr", "PensionSchemeParticipantDr",
    "AccountCr", "AccountNameCr", "AnalyticCr", "AnalyticRefCr", "IDCr",
    "LegalFormCr", "CountryCr", "ProfitTaxCr", "WithholdingTaxCr",
    "DoubleTaxationCr", "PensionSchemeParticipantCr",
    "Currency", "Amount", "AmountCur", "QuantityDr", "QuantityCr", "Rate",
    "DocumentRate", "TAXInvoiceNumber", "TAXInvoiceDate", "TAXInvoiceSeries",
    "WaybillNumber", "AttachedFiles", "DocType", "DocDate", "DocNumber",
    "DocumentCreationDate", "DocumentModifyDate", "DocumentComments",
    "PostingNumber",
]

# binary(16) references
HEX_COLUMNS = {"Register", "AnalyticRefDr", "AnalyticRefCr"}

# binary(1) flags
BOOLEAN_COLUMNS = {
    "ProfitTaxDr", "WithholdingTaxDr", "DoubleTaxationDr", "PensionSchemeParticipantDr",
    "ProfitTaxCr", "WithholdingTaxCr", "DoubleTaxationCr", "PensionSchemeParticipantCr",
}

DECIMAL_COLUMNS = {
    "Amount", "AmountCur", "QuantityDr", "QuantityCr", "Rate", "DocumentRate", "AttachedFiles",
}

# journal_entries already has a "description"; the raw text lands in content_text
JOURNAL_COLUMN_OVERRIDES = {"Content": "content_text"}

# Stable order; ties inside one period/posting fall back to the document number
LEDGER_ORDER_BY = "PostingsPeriod, PostingNumber, DocNumber"

JOURNAL_KEY_COLUMNS = ("company_id", "entry_number")


def journal_column_name(source_column: str) -> str:
    return JOURNAL_COLUMN_OVERRIDES.get(source_column, translate_column_name(source_column))


def convert_ledger_value(source_column: str, value: Any) -> Any:
    if source_column in HEX_COLUMNS:
        return convert_binary_to_hex(value)
    if source_column in BOOLEAN_COLUMNS:
        return convert_binary_to_boolean(value)
    if source_column in DECIMAL_COLUMNS:
        return convert_decimal(value)
    return value


def ledger_select(schema: str = "dbo") -> str:
    """Tenant-scoped, ordered select of the 49 ledger columns."""
    return (
        f"SELECT {', '.join(LEDGER_COLUMNS)} "
        f"FROM {qualified_source_name(schema, LEDGER_TABLE)} "
        f"WHERE TenantCode = :tenant_code "
        f"ORDER BY {LEDGER_ORDER_BY}"
    )


def ledger_count(schema: str = "dbo") -> str:
    return (
        f"SELECT COUNT(*) FROM {qualified_source_name(schema, LEDGER_TABLE)} "
        f"WHERE TenantCode = :tenant_code"
    )


def entry_number(tenant_code: int, ordinal: int) -> str:
    return f"GL-{tenant_code}-{ordinal:06d}"


def to_journal_entry(
    row: Dict[str, Any],
    ordinal: int,
    tenant_code: int,
    company_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build one journal_entries record from a GeneralLedger row.

    Args:
        row: Source row keyed by source column name
        ordinal: 1-based position of the row in the ordered stream
        tenant_code: Source tenant the row belongs to
        company_id: Destination company that owns the entry
        now: Fallback date for rows without a postings period

    Returns:
        Record keyed by journal_entries column name
    """
    amount = convert_decimal(row.get("Amount"))

    record: Dict[str, Any] = {
        "company_id": company_id,
        "entry_number": entry_number(tenant_code, ordinal),
        "date": row.get("PostingsPeriod") or now or datetime.utcnow(),
        "description": row.get("Content") or f"General Ledger Entry {ordinal}",
        "reference": None,
        "total_amount": amount if amount is not None else 0,
        "user_id": None,
        "is_posted": True,
    }

    for column in LEDGER_COLUMNS:
        record[journal_column_name(column)] = convert_ledger_value(column, row.get(column))

    return record


def to_journal_update(
    row: Dict[str, Any],
    ordinal: int,
    tenant_code: int,
    company_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Same as to_journal_entry, minus the columns an update must not touch."""
    record = to_journal_entry(row, ordinal, tenant_code, company_id, now)
    for column in ("reference", "user_id", "is_posted"):
        record.pop(column)
    return record


JOURNAL_ENTRY_COLUMNS: List[str] = [
    "company_id", "entry_number", "date", "description", "reference",
    "total_amount", "user_id", "is_posted",
] + [journal_column_name(c) for c in LEDGER_COLUMNS]
