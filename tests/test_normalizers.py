# tests/test_normalizers.py

from datetime import date, datetime

from payrecon.core.normalizers import (
    build_payer_raw,
    normalize,
    normalize_currency,
    normalize_date,
    normalize_name,
    normalize_period,
    normalize_reference,
    parse_amount,
)


class TestNormalizeName:

    def test_accents_and_punctuation(self):
        assert normalize_name("Pérez, Juan") == "PEREZ JUAN"
        assert normalize_name("  Sucesión de Gómez ") == "SUCESION DE GOMEZ"

    def test_separators_become_spaces(self):
        assert normalize_name("J.Perez-Gomez/(SA)") == "J PEREZ GOMEZ SA"
        assert normalize_name('O\'Brien "Jr"') == "O BRIEN JR"

    def test_idempotent(self):
        for text in ["Pérez, Juan", "ÑANDÚ S.R.L.", "  a  b  ", "x_y\\z"]:
            once = normalize_name(text)
            assert normalize_name(once) == once

    def test_empty_input(self):
        assert normalize_name("") == ""
        assert normalize_name("   ") == ""
        assert normalize_name(None) == ""
        assert normalize_name(42) == ""

    def test_normalize_tokens(self):
        payer = normalize("Pérez, Juan")
        assert payer.normalized == "PEREZ JUAN"
        assert payer.tokens == ("PEREZ", "JUAN")
        assert not payer.is_empty

    def test_normalize_empty_is_empty(self):
        payer = normalize(" .,; ")
        assert payer.normalized == ""
        assert payer.tokens == ()
        assert payer.is_empty


class TestRowHelpers:

    def test_build_payer_raw_joins_parts(self):
        assert build_payer_raw("Juan", None, "  Perez ") == "Juan Perez"
        assert build_payer_raw(None, "") == ""

    def test_parse_amount(self):
        assert parse_amount(1500) == 1500.0
        assert parse_amount("1500.50") == 1500.5
        assert parse_amount("$ 1.234,56") == 1234.56
        assert parse_amount("1,234.56") == 1234.56
        assert parse_amount("-20") == -20.0

    def test_parse_amount_malformed(self):
        assert parse_amount(None) is None
        assert parse_amount("") is None
        assert parse_amount("abc") is None
        assert parse_amount(True) is None
        assert parse_amount(float("nan")) is None

    def test_normalize_date(self):
        assert normalize_date("2024-03-15") == date(2024, 3, 15)
        assert normalize_date("15/03/2024") == date(2024, 3, 15)
        assert normalize_date(datetime(2024, 3, 15, 10, 0)) == date(2024, 3, 15)
        assert normalize_date("not a date") is None

    def test_normalize_date_timestamp_is_utc(self):
        # 2024-02-29T23:59:59Z, March already in any zone east of UTC
        assert normalize_date(1709251199) == date(2024, 2, 29)
        assert normalize_period(None, 1709251199) == "2024-02"

    def test_normalize_date_bad_timestamp(self):
        assert normalize_date(10**20) is None
        assert normalize_date(float("nan")) is None
        assert normalize_date(float("inf")) is None
        assert normalize_period(None, 10**20) is None

    def test_normalize_period(self):
        assert normalize_period("2024-3") == "2024-03"
        assert normalize_period(None, "2024-03-15") == "2024-03"
        assert normalize_period("garbage", date(2024, 12, 1)) == "2024-12"
        assert normalize_period() is None

    def test_normalize_reference_and_currency(self):
        assert normalize_reference("  Cuota   MARZO ") == "cuota marzo"
        assert normalize_reference(None) == ""
        assert normalize_currency(" usd ", "ARS") == "USD"
        assert normalize_currency(None, "ARS") == "ARS"
