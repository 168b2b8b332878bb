"""
Unit tests for human-facing sequence numbers.
"""
from datetime import datetime, timezone

from app.services import numbering


JAN_2026 = datetime(2026, 1, 15, tzinfo=timezone.utc)


class TestCompanyNumbers:
    """CU#### for customers, V#### for suppliers."""

    def test_customer_and_supplier_prefixes(self):
        assert numbering.format_company_number("customer", 1) == "CU0001"
        assert numbering.format_company_number("supplier", 42) == "V0042"

    def test_next_suffix_ignores_other_prefixes(self):
        existing = ["CU0001", "CU0007", "V0009", None, "CUSTOM"]
        assert numbering.next_suffix(existing, "CU") == 8

    def test_next_suffix_starts_at_one(self):
        assert numbering.next_suffix([], "V") == 1

    def test_company_number_validation(self):
        assert numbering.is_valid_company_number("CU0012")
        assert numbering.is_valid_company_number("V0003")
        assert not numbering.is_valid_company_number("X0001")
        assert not numbering.is_valid_company_number("CU")
        assert not numbering.is_valid_company_number("")


class TestUserNumbers:

    def test_first_user_number_follows_floor(self):
        assert numbering.next_user_number([]) == "100010"

    def test_next_user_number_uses_highest(self):
        assert numbering.next_user_number(["100010", "100015", None, "abc"]) == "100016"


class TestYearlyNumbers:
    """SQTE-YYNNN, SORD-YYNNN and SINV-YYNNN restart their counter each year."""

    def test_order_number_format(self):
        assert numbering.format_yearly_number("SORD", 1, JAN_2026) == "SORD-26001"

    def test_yearly_prefix(self):
        assert numbering.yearly_prefix("SINV", JAN_2026) == "SINV-26"

    def test_next_suffix_within_year(self):
        existing = ["SQTE-26001", "SQTE-26014", "SQTE-25099"]
        assert numbering.next_suffix(existing, "SQTE-26") == 15


class TestSqteReferences:
    """RFQ routing references use a counter separate from quote numbers."""

    def test_format(self):
        assert numbering.format_sqte_reference(7) == "SQTE-007"

    def test_quote_numbers_are_not_references(self):
        assert numbering.parse_sqte_reference("SQTE-26001") is None

    def test_parse_reference(self):
        assert numbering.parse_sqte_reference("SQTE-012") == 12

    def test_parse_rejects_garbage(self):
        assert numbering.parse_sqte_reference(None) is None
        assert numbering.parse_sqte_reference("SORD-26001") is None


class TestPurchaseOrderNumbers:

    def test_format(self):
        assert numbering.format_purchase_order_number(3) == "PO-0003"
