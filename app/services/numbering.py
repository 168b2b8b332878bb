"""
Human-facing sequence numbers.

Pure formatting and parsing helpers; the storage layer computes the next value
from existing rows and retries on unique-constraint conflicts.
"""
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

CUSTOMER_COMPANY_PREFIX = "CU"
SUPPLIER_COMPANY_PREFIX = "V"
QUOTE_PREFIX = "SQTE"
ORDER_PREFIX = "SORD"
INVOICE_PREFIX = "SINV"
PURCHASE_ORDER_PREFIX = "PO"

USER_NUMBER_FLOOR = 100009

_COMPANY_NUMBER_RE = re.compile(r"^(CU|V)(\d+)$")


def year_prefix(now: Optional[datetime] = None) -> str:
    """Two-digit year, e.g. '26'."""
    now = now or datetime.now(timezone.utc)
    return f"{now.year % 100:02d}"


def company_prefix(company_type: str) -> str:
    return SUPPLIER_COMPANY_PREFIX if company_type == "supplier" else CUSTOMER_COMPANY_PREFIX


def parse_suffix(value: Optional[str], prefix: str) -> Optional[int]:
    """Return the integer after ``prefix`` or None when the value does not match."""
    if not value or not value.startswith(prefix):
        return None
    digits = value[len(prefix):]
    if not digits.isdigit():
        return None
    return int(digits)


def next_suffix(values: Iterable[Optional[str]], prefix: str) -> int:
    """Highest numeric suffix among ``values`` carrying ``prefix``, plus one."""
    highest = 0
    for value in values:
        suffix = parse_suffix(value, prefix)
        if suffix is not None and suffix > highest:
            highest = suffix
    return highest + 1


def format_company_number(company_type: str, seq: int) -> str:
    return f"{company_prefix(company_type)}{seq:04d}"


def is_valid_company_number(value: str) -> bool:
    return bool(_COMPANY_NUMBER_RE.match(value or ""))


def next_user_number(values: Iterable[Optional[str]]) -> str:
    highest = USER_NUMBER_FLOOR
    for value in values:
        if value and value.isdigit():
            highest = max(highest, int(value))
    return str(highest + 1)


def yearly_prefix(prefix: str, now: Optional[datetime] = None) -> str:
    """'SORD-26' style prefix shared by quote, order and invoice numbers."""
    return f"{prefix}-{year_prefix(now)}"


def format_yearly_number(prefix: str, seq: int, now: Optional[datetime] = None) -> str:
    return f"{yearly_prefix(prefix, now)}{seq:03d}"


def format_sqte_reference(seq: int) -> str:
    """RFQ routing reference, SQTE-NNN. Separate counter from quote numbers."""
    return f"{QUOTE_PREFIX}-{seq:03d}"


def parse_sqte_reference(value: Optional[str]) -> Optional[int]:
    # Quote numbers (SQTE-YYNNN) have five digits and never count as references
    suffix = parse_suffix(value, f"{QUOTE_PREFIX}-")
    if suffix is None or len(value) - len(QUOTE_PREFIX) - 1 == 5:
        return None
    return suffix


def format_purchase_order_number(seq: int) -> str:
    return f"{PURCHASE_ORDER_PREFIX}-{seq:04d}"
