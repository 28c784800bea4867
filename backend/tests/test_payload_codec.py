"""
test_payload_codec.py - Unit tests for persisted payload decoding and encoding.

Tests cover:
  - Native camelCase / snake_case payloads
  - Server-shaped payloads (title, subSections, budgetRows, optionBudgetRows)
  - Account normalisation ("Välj konto", numbers, legacy "4010 - Text")
  - Id assignment (max + 1 for missing ids, duplicate rejection)
  - Rate recovery from fee / budget
  - Path-annotated PayloadError for malformed input
  - CalculationPayload: server keys, null lists, strict flags and ids
  - Encoding: amounts, null accounts, sub-subsections

All tests are pure unit tests; no database or external services required.
"""

import pytest

from kalkyl.models.calculation_payload import CalculationPayload
from kalkyl.services.aggregation_engine import summarize
from kalkyl.services.payload_codec import (
    PayloadError,
    calculation_from_payload,
    calculation_to_payload,
    error_path,
    parse_account,
)


class TestDecodeNative:
    """Native payload shape."""

    def test_basic_payload(self, sample_payload):
        calc = calculation_from_payload(sample_payload)
        assert calc.name == "Förråd"
        assert calc.rate == 8
        assert calc.area == 20
        row = calc.sections[0].subsections[0].rows[0]
        assert (row.quantity, row.price_per_unit, row.co2, row.unit) == (10, 100, 50, "m3")
        assert summarize(calc).bid_amount == pytest.approx(1080)

    def test_snake_case_keys(self):
        calc = calculation_from_payload({
            "name": "Snake",
            "co2_budget": 4,
            "sections": [{"subsections": [{
                "rows": [{"price_per_unit": 3, "quantity": 2}],
                "sub_subsections": [{"rows": [{"price_per_unit": 1, "quantity": 1}]}],
            }]}],
        })
        assert calc.co2_budget == 4
        sub = calc.sections[0].subsections[0]
        assert sub.rows[0].price_per_unit == 3
        assert sub.sub_subsections[0].rows[0].quantity == 1

    def test_optional_fields_defaulted(self):
        calc = calculation_from_payload({"sections": [{"subsections": [{"rows": [{}]}]}]})
        section = calc.sections[0]
        row = section.subsections[0].rows[0]
        assert section.name == "Nivå 1"
        assert section.subsections[0].name == "Nivå 2"
        assert section.subsections[0].sub_subsections == []
        assert row.account is None
        assert (row.resource, row.note, row.unit) == ("", "", "m2")

    def test_stored_amounts_ignored(self, sample_payload):
        sample_payload["sections"][0]["amount"] = 1
        sample_payload["sections"][0]["subsections"][0]["rows"][0]["amount"] = 1
        calc = calculation_from_payload(sample_payload)
        assert summarize(calc).budget_excl_rate == 1000

    def test_comma_decimal_strings(self):
        calc = calculation_from_payload({"options": [{"quantity": "2,5", "pricePerUnit": "10"}]})
        assert calc.options[0].line_total == 25


class TestDecodeServerShape:
    """Payloads in the persisted server shape."""

    def test_server_payload(self):
        payload = {
            "name": "Kontor",
            "squareMeter": 250,
            "co2Budget": 3,
            "budget": 2000,
            "fee": 160,
            "sections": [{
                "id": 7,
                "title": "Mark",
                "budgetRows": [],
                "subSections": [{
                    "title": "Schakt",
                    "budgetRows": [
                        {"name": "Grävning", "quantity": 10, "price": 100, "accountNo": "4010 - Material",
                         "notes": "Lera"},
                    ],
                    "subSections": [{
                        "title": "Detalj",
                        "budgetRows": [{"name": "Hand", "quantity": 2, "price": 500, "accountNo": "Välj konto"}],
                    }],
                }],
            }],
            "optionBudgetRows": [{"name": "Carport", "quantity": 1, "price": 300, "amount": 300}],
        }
        calc = calculation_from_payload(payload)
        assert calc.area == 250
        assert calc.rate == pytest.approx(8)
        section = calc.sections[0]
        assert (section.id, section.name) == (7, "Mark")
        sub = section.subsections[0]
        assert sub.rows[0].description == "Grävning"
        assert sub.rows[0].account == "4010"
        assert sub.rows[0].note == "Lera"
        assert sub.sub_subsections[0].name == "Detalj"
        assert sub.sub_subsections[0].rows[0].account is None
        assert calc.options[0].description == "Carport"
        assert summarize(calc).budget_excl_rate == 2300

    def test_default_rate_when_absent(self):
        from kalkyl.config import settings
        assert calculation_from_payload({}).rate == settings.default_rate


class TestIds:
    """Id assignment."""

    def test_missing_ids_take_max_plus_one(self):
        calc = calculation_from_payload({"sections": [{"id": 4}, {}, {"id": 2}, {}]})
        assert [s.id for s in calc.sections] == [4, 5, 2, 6]

    def test_duplicate_ids_rejected(self):
        with pytest.raises(PayloadError) as exc:
            calculation_from_payload({"options": [{"id": 1}, {"id": 1}]})
        assert exc.value.path == "options[1].id"

    def test_row_ids_scoped_per_parent(self):
        calc = calculation_from_payload({"sections": [{"subsections": [
            {"rows": [{"id": 1}, {"id": 2}]},
            {"rows": [{"id": 1}]},
        ]}]})
        assert [s.id for s in calc.sections[0].subsections] == [1, 2]
        assert [r.id for r in calc.sections[0].subsections[1].rows] == [1]


class TestDecodeErrors:
    """Malformed payloads raise PayloadError naming the offending path."""

    def test_not_an_object(self):
        with pytest.raises(PayloadError):
            calculation_from_payload([])

    def test_bad_quantity_path(self):
        payload = {"sections": [{}, {"subsections": [{"rows": [{}, {}, {"quantity": "tio"}]}]}]}
        with pytest.raises(PayloadError) as exc:
            calculation_from_payload(payload)
        assert exc.value.path == "sections[1].subsections[0].rows[2].quantity"
        assert str(exc.value).startswith("sections[1].subsections[0].rows[2].quantity:")

    def test_negative_price_rejected(self):
        with pytest.raises(PayloadError) as exc:
            calculation_from_payload({"options": [{"pricePerUnit": -1}]})
        assert exc.value.path == "options[0].pricePerUnit"

    def test_rows_directly_under_section_rejected(self):
        with pytest.raises(PayloadError) as exc:
            calculation_from_payload({"sections": [{"rows": [{"quantity": 1}]}]})
        assert exc.value.path == "sections[0].rows"

    def test_fourth_level_rejected(self):
        payload = {"sections": [{"subsections": [{"subSubsections": [{"subSections": [{}]}]}]}]}
        with pytest.raises(PayloadError):
            calculation_from_payload(payload)

    @pytest.mark.parametrize("value", [True, "abc", [1], float("inf")])
    def test_non_numeric_area(self, value):
        with pytest.raises(PayloadError):
            calculation_from_payload({"area": value})

    def test_sections_must_be_list(self):
        with pytest.raises(PayloadError) as exc:
            calculation_from_payload({"sections": {"id": 1}})
        assert exc.value.path == "sections"

    def test_payload_error_is_value_error(self):
        assert issubclass(PayloadError, ValueError)


class TestParseAccount:
    """parse_account()."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, None),
            ("", None),
            ("Välj konto", None),
            (0, None),
            ("0", None),
            (4010, "4010"),
            ("4010", "4010"),
            (" 4010 - Material ", "4010"),
            ("Extern", "Extern"),
        ],
    )
    def test_values(self, value, expected):
        assert parse_account(value) == expected


class TestEncode:
    """calculation_to_payload()."""

    def test_amounts_and_accounts(self, sample_calculation):
        payload = calculation_to_payload(sample_calculation)
        section = payload["sections"][0]
        sub = section["subsections"][0]
        assert section["amount"] == 1600
        assert sub["amount"] == 1600
        assert sub["rows"][0]["amount"] == 1000
        assert sub["rows"][0]["account"] is None
        assert sub["rows"][1]["account"] == "4010"
        assert sub["subSubsections"][0]["amount"] == 100
        assert payload["options"][0]["amount"] == 1000
        assert payload["co2Budget"] == 2

    def test_decode_of_encoded_keeps_content(self, sample_calculation):
        """Decoding an encoded tree gives back the same calculation."""
        decoded = calculation_from_payload(calculation_to_payload(sample_calculation))
        assert summarize(decoded) == summarize(sample_calculation)
        assert decoded.sections[0].subsections[0].sub_subsections[0].rows[0].description == "Handschakt"
        assert decoded.sections[0].expanded is True
        assert decoded.created_by == "Anna Berg"


class TestPayloadModels:
    """CalculationPayload validation and error paths."""

    def test_server_keys_validate(self):
        payload = CalculationPayload.model_validate({
            "squareMeter": "120,5",
            "optionBudgetRows": [{"name": "Carport", "price": 300}],
            "sections": [{"title": "Mark", "subSections": [{"budgetRows": [{"accountNo": "Välj konto"}]}]}],
        })
        assert payload.area == 120.5
        assert payload.options[0].description == "Carport"
        assert payload.options[0].price_per_unit == 300
        assert payload.sections[0].name == "Mark"
        assert payload.sections[0].subsections[0].rows[0].account is None

    def test_null_lists_and_text_default(self):
        payload = CalculationPayload.model_validate({"name": None, "sections": None, "options": None})
        assert (payload.name, payload.sections, payload.options) == ("", [], [])

    def test_numeric_text_fields(self):
        row = CalculationPayload.model_validate(
            {"sections": [{"subsections": [{"rows": [{"description": 42, "unit": 3}]}]}]}
        ).sections[0].subsections[0].rows[0]
        assert (row.description, row.unit) == ("42", "3")

    @pytest.mark.parametrize("field", ["quantity", "co2", "pricePerUnit"])
    def test_negative_row_numbers_rejected(self, field):
        with pytest.raises(PayloadError) as exc:
            calculation_from_payload({"sections": [{"subsections": [{"rows": [{field: -1}]}]}]})
        assert exc.value.path == f"sections[0].subsections[0].rows[0].{field}"

    def test_expanded_must_be_bool(self):
        with pytest.raises(PayloadError) as exc:
            calculation_from_payload({"sections": [{"expanded": "ja"}]})
        assert exc.value.path == "sections[0].expanded"

    def test_bool_id_rejected(self):
        with pytest.raises(PayloadError):
            calculation_from_payload({"sections": [{"id": True}]})

    def test_validated_model_accepted(self, sample_payload):
        calc = calculation_from_payload(CalculationPayload.model_validate(sample_payload))
        assert calc.sections[0].subsections[0].rows[0].quantity == 10

    @pytest.mark.parametrize(
        "loc, expected",
        [
            ((), ""),
            (("area",), "area"),
            (("sections", 1, "subsections", 0, "rows", 2, "quantity"), "sections[1].subsections[0].rows[2].quantity"),
        ],
    )
    def test_error_path(self, loc, expected):
        assert error_path(loc) == expected
