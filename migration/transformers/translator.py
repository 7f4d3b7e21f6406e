"""
Translate legacy SQL Server names and values into destination conventions.

Handles:
- Table names (PascalCase, irregular audit names) -> snake_case
- Column names, including acronym boundaries (CompanyID -> company_id)
- binary(1) flags -> boolean, binary(16) references -> hex strings
- decimal/numeric -> Decimal, tolerating dirty source data
- Identifier allow-list validation and source-side quoting
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
import re
import logging

from core.exceptions import IdentifierNotAllowedError
from schemas.migration import ColumnDescriptor

logger = logging.getLogger(__name__)


# Whitelisted tables of the source "audit" schema, in listing order
AUDIT_TABLES: List[str] = [
    "1690Stock",
    "AccountsSummary",
    "AccruedInterest",
    "Analytics",
    "AnalyticsBalanceSummary",
    "CapitalAccounts",
    "CapitalAccountsSummary",
    "CreditorsAvans",
    "DebitorsAvans",
    "DublicateCreditors",
    "DublicateDebitors",
    "HighAmountPerQuantitySummary",
    "NegativCreditor",
    "NegativDebitor",
    "NegativeBalance141Summary",
    "NegativeBalance311Summary",
    "NegativeBalanceSummary",
    "NegativeLoans",
    "NegativeStock",
    "NegativInterest",
    "NegativSalary",
    "PositiveBalanceSummary",
    "RevaluationStatusSummary",
    "SalaryExpense",
    "WriteoffStock",
]

# Known source -> destination table names. Names with embedded numbers do not
# survive the generic rule (NegativeBalance141Summary -> negative_balance141_summary).
TABLE_NAME_MAP: Dict[str, str] = {
    "1690Stock": "1690_stock",
    "AccountsSummary": "accounts_summary",
    "AccruedInterest": "accrued_interest",
    "Analytics": "analytics",
    "AnalyticsBalanceSummary": "analytics_balance_summary",
    "CapitalAccounts": "capital_accounts",
    "CapitalAccountsSummary": "capital_accounts_summary",
    "CreditorsAvans": "creditors_avans",
    "DebitorsAvans": "debitors_avans",
    "DublicateCreditors": "dublicate_creditors",
    "DublicateDebitors": "dublicate_debitors",
    "HighAmountPerQuantitySummary": "high_amount_per_quantity_summary",
    "NegativCreditor": "negativ_creditor",
    "NegativDebitor": "negativ_debitor",
    "NegativeBalance141Summary": "negative_balance_141_summary",
    "NegativeBalance311Summary": "negative_balance_311_summary",
    "NegativeBalanceSummary": "negative_balance_summary",
    "NegativeLoans": "negative_loans",
    "NegativeStock": "negative_stock",
    "NegativInterest": "negativ_interest",
    "NegativSalary": "negativ_salary",
    "PositiveBalanceSummary": "positive_balance_summary",
    "RevaluationStatusSummary": "revaluation_status_summary",
    "SalaryExpense": "salary_expense",
    "WriteoffStock": "writeoff_stock",
}

SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$")

_CAPITAL = re.compile(r"([A-Z])")
_LOWER_THEN_UPPER = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_THEN_WORD = re.compile(r"([A-Z]+)([A-Z][a-z])")

DECIMAL_TYPES = {"decimal", "numeric", "money", "smallmoney", "float", "real"}
INTEGER_TYPES = {"int", "bigint", "smallint", "tinyint"}
TEMPORAL_TYPES = {"date", "datetime", "datetime2", "smalldatetime", "datetimeoffset", "time"}
CHARACTER_TYPES = {"nvarchar", "varchar", "char", "nchar", "text", "ntext", "uniqueidentifier"}
BINARY_TYPES = {"binary", "varbinary", "image", "timestamp", "rowversion"}


# ============================================================================
# Names
# ============================================================================

def translate_table_name(table_name: str) -> str:
    """
    Convert a source table name to its destination name.

    Known tables come from TABLE_NAME_MAP; anything else gets an underscore
    before every capital letter and is lowercased.
    """
    if table_name in TABLE_NAME_MAP:
        return TABLE_NAME_MAP[table_name]
    return _CAPITAL.sub(r"_\1", table_name).lower().lstrip("_")


def translate_column_name(column_name: str) -> str:
    """
    Convert a source column name to snake_case.

    TenantCode -> tenant_code, CompanyID -> company_id, IDDr -> id_dr,
    TAXInvoiceNumber -> tax_invoice_number. The acronym rule must run second,
    otherwise a trailing abbreviation stays glued to the next word.
    """
    name = _LOWER_THEN_UPPER.sub(r"\1_\2", column_name)
    name = _ACRONYM_THEN_WORD.sub(r"\1_\2", name)
    return name.lower()


def validate_identifier(name: Optional[str], kind: str = "identifier") -> str:
    """Reject anything that is not a plain [A-Za-z0-9_] identifier."""
    if not name or not SAFE_IDENTIFIER.match(name):
        raise IdentifierNotAllowedError(
            f"Invalid {kind}: {name!r}",
            context={"kind": kind, "value": name}
        )
    return name


def ensure_allowed(name: Optional[str], allowed: Iterable[str], kind: str = "table") -> str:
    """Validate an identifier and require membership in an allow-list."""
    validate_identifier(name, kind)
    if name not in set(allowed):
        raise IdentifierNotAllowedError(
            f"{kind.capitalize()} {name!r} is not in the allowed list",
            context={"kind": kind, "value": name}
        )
    return name


def quote_source_identifier(name: str) -> str:
    """
    Quote an identifier for the SQL Server source.

    T-SQL needs brackets around names that start with a digit (1690Stock).
    """
    validate_identifier(name)
    if name[0].isdigit():
        return f"[{name}]"
    return name


def qualified_source_name(schema: str, table_name: str) -> str:
    return f"{quote_source_identifier(schema)}.{quote_source_identifier(table_name)}"


# ============================================================================
# Values
# ============================================================================

def convert_binary_to_boolean(value: Any) -> Optional[bool]:
    """
    Convert a binary(1) flag to a boolean.

    Accepts drivers that already decoded the flag (bool, 0/1). Never raises.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        if not data:
            return None
        return data[0] != 0x00
    return None


def convert_binary_to_hex(value: Any) -> Optional[str]:
    """Convert a binary(16) reference to a lowercase hex string."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, str):
        return value
    return None


def convert_decimal(value: Any) -> Optional[Decimal]:
    """Convert a numeric value safely; anything unparseable becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def convert_integer(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)) and value == int(value):
        return int(value)
    return None


def convert_temporal(value: Any) -> Optional[Any]:
    if isinstance(value, (datetime, date, time)):
        return value
    return None


def convert_value(value: Any, column: ColumnDescriptor) -> Any:
    """Convert one source value according to its declared source type."""
    if value is None:
        return None

    data_type = column.data_type
    if data_type in DECIMAL_TYPES:
        return convert_decimal(value)
    if data_type in INTEGER_TYPES:
        return convert_integer(value)
    if data_type in TEMPORAL_TYPES:
        return convert_temporal(value)
    if data_type in CHARACTER_TYPES:
        return str(value)
    if data_type == "bit":
        return convert_binary_to_boolean(value)
    if data_type == "binary" and column.max_length == 1:
        return convert_binary_to_boolean(value)
    if data_type in BINARY_TYPES:
        return convert_binary_to_hex(value)
    return value


class RowTranslator:
    """
    Positional translator for dynamically described tables.

    Destination values are produced in the same order as the source column
    descriptors, prefixed by fixed owner values (company_code, company_id, ...).
    """

    def __init__(
        self,
        columns: Sequence[ColumnDescriptor],
        prefix: Optional[Dict[str, Any]] = None,
        suffix: Optional[Dict[str, Any]] = None,
        column_namer=translate_column_name,
    ):
        self.columns = list(columns)
        self.prefix = dict(prefix or {})
        self.suffix = dict(suffix or {})
        self.destination_columns = [column_namer(c.name) for c in self.columns]

        for name in self.destination_columns:
            validate_identifier(name, "column")

        duplicates = set(self.prefix) & set(self.destination_columns)
        if duplicates:
            raise IdentifierNotAllowedError(
                f"Source columns collide with owner columns: {sorted(duplicates)}",
                context={"columns": sorted(duplicates)}
            )

    @property
    def column_names(self) -> List[str]:
        return list(self.prefix) + self.destination_columns + list(self.suffix)

    def translate(self, row: Dict[str, Any], ordinal: int = 0) -> Dict[str, Any]:
        record: Dict[str, Any] = dict(self.prefix)
        for column, destination in zip(self.columns, self.destination_columns):
            record[destination] = convert_value(row.get(column.name), column)
        record.update(self.suffix)
        return record
