"""
Tests for the request number value object.

Format: {company}-{department}-{YYYYMM}-{seq:04d}.  Company codes may
contain dashes; department codes may not.
"""

from datetime import datetime, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from procurement_kernel.domain.request_number import (
    COMPANY_CODE_PATTERN,
    DEPARTMENT_CODE_PATTERN,
    MAX_SEQUENCE,
    RequestNumber,
    period_for,
    prefix_for,
)

_alnum = st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789", min_size=1, max_size=6)
company_codes = st.lists(_alnum, min_size=1, max_size=3).map("-".join)
department_codes = _alnum
periods = st.builds(
    lambda y, m: f"{y:04d}{m:02d}",
    st.integers(min_value=2000, max_value=2099),
    st.integers(min_value=1, max_value=12),
)
sequences = st.integers(min_value=1, max_value=MAX_SEQUENCE)


class TestFormat:

    def test_example(self):
        number = RequestNumber("ACME", "ENG", "202508", 7)
        assert number.value == "ACME-ENG-202508-0007"
        assert str(number) == number.value
        assert number.prefix == "ACME-ENG-202508"

    def test_dashed_company_code(self):
        number = RequestNumber.parse("AKM-JKT-IT-202508-0012")
        assert number.company_code == "AKM-JKT"
        assert number.department_code == "IT"
        assert number.period == "202508"
        assert number.sequence == 12

    @given(company_codes, department_codes, periods, sequences)
    def test_parse_inverts_value(self, company, department, period, seq):
        number = RequestNumber(company, department, period, seq)
        assert RequestNumber.parse(number.value) == number

    @given(company_codes, department_codes, periods, sequences, sequences)
    def test_string_order_is_sequence_order(self, company, department, period, a, b):
        first = RequestNumber(company, department, period, a).value
        second = RequestNumber(company, department, period, b).value
        assert (first < second) == (a < b)

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "ACME-ENG-202508-7",
            "ACME-ENG-2025-0001",
            "acme-eng-202508-0001",
            "ACME-ENG-202508-00001",
            "ACMEENG2025080001",
        ],
    )
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            RequestNumber.parse(value)

    @pytest.mark.parametrize("seq", [0, -1, MAX_SEQUENCE + 1])
    def test_sequence_bounds(self, seq):
        with pytest.raises(ValueError):
            RequestNumber("ACME", "ENG", "202508", seq)

    def test_period_must_be_six_digits(self):
        with pytest.raises(ValueError):
            RequestNumber("ACME", "ENG", "2025-8", 1)


class TestHelpers:

    def test_period_for(self):
        assert period_for(datetime(2025, 1, 31, 23, 59, tzinfo=timezone.utc)) == "202501"
        assert period_for(datetime(2025, 12, 1, tzinfo=timezone.utc)) == "202512"

    def test_prefix_upper_cases(self):
        assert prefix_for("acme", "eng", "202508") == "ACME-ENG-202508"

    @pytest.mark.parametrize("code", ["ACME", "AKM-JKT", "A1-B2-C3"])
    def test_company_codes(self, code):
        assert COMPANY_CODE_PATTERN.match(code)

    @pytest.mark.parametrize("code", ["", "-ACME", "ACME-", "AC ME", "acme", "A--B"])
    def test_bad_company_codes(self, code):
        assert not COMPANY_CODE_PATTERN.match(code)

    def test_department_codes_have_no_dashes(self):
        assert DEPARTMENT_CODE_PATTERN.match("ENG")
        assert not DEPARTMENT_CODE_PATTERN.match("EN-G")
