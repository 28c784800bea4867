"""
test_template_catalog.py - Unit tests for the built-in template catalog.

Tests cover:
  - Catalog listing and metadata shape
  - Instantiation: collapsed sections, one default subsection, row defaults
  - Unknown template ids
  - Custom ad-hoc templates
  - Display labels for default node names

All tests are pure unit tests; no database or external services required.
"""

import pytest

from kalkyl.config import SECTION_LABEL, SUBSECTION_LABEL
from kalkyl.services.aggregation_engine import aggregate
from kalkyl.services.calculation_model import calculation_from_template, display_name_and_index
from kalkyl.services.template_catalog import (
    all_templates,
    create_custom_template,
    get_template,
    get_template_metadata,
    instantiate,
    template_ids,
)


class TestCatalog:
    """Catalog listing."""

    def test_template_ids(self):
        assert template_ids() == [
            "empty", "generalContracting", "residential", "renovation", "industrial", "office", "infrastructure",
        ]

    def test_metadata_shape(self):
        for entry in all_templates():
            assert set(entry) == {"id", "title", "description", "popular", "template"}
            assert isinstance(entry["popular"], bool)
            assert entry["template"]["sections"]

    def test_catalog_returns_copies(self):
        """Mutating a returned entry does not leak into the catalog."""
        entry = get_template_metadata("empty")
        entry["template"]["sections"].clear()
        assert len(get_template("empty")["sections"]) == 3

    def test_unknown_id(self):
        assert get_template_metadata("nope") is None
        assert get_template("nope") is None
        assert instantiate("nope") is None


class TestInstantiate:
    """Calculations seeded from templates."""

    def test_empty_template(self):
        calc = instantiate("empty", name="Ny kalkyl", project="P1", rate=10)
        assert (calc.name, calc.project, calc.rate) == ("Ny kalkyl", "P1", 10)
        assert [s.id for s in calc.sections] == [1, 2, 3]
        for section in calc.sections:
            assert section.expanded is False
            assert len(section.subsections) == 1
            assert section.subsections[0].name == SUBSECTION_LABEL
            assert section.subsections[0].rows == []

    def test_template_name_used_when_no_name_given(self):
        assert instantiate("residential").name == "Residential Building"

    def test_rows_copied_with_defaults(self):
        calc = instantiate("generalContracting")
        rows = calc.sections[0].subsections[0].rows
        assert [r.id for r in rows] == list(range(1, len(rows) + 1))
        assert rows[0].description == "Markarbeten"
        assert rows[0].account is None
        assert rows[0].co2 == 0
        assert (rows[0].resource, rows[0].note) == ("", "")
        assert rows[1].account == "4010"

    def test_general_contracting_amounts(self):
        agg = aggregate(instantiate("generalContracting"))
        assert len(agg.sections) == 7
        assert agg.sections[0].amount == pytest.approx(5_117_400)
        assert all(s.amount == 0 for s in agg.sections[1:])

    def test_default_rate(self):
        from kalkyl.config import settings
        assert instantiate("office").rate == settings.default_rate


class TestCustomTemplate:
    """create_custom_template()."""

    def test_custom_sections(self):
        template = create_custom_template("Garage", ["Grund", "Väggar"])
        calc = calculation_from_template(template)
        assert calc.name == "Garage"
        assert [s.name for s in calc.sections] == ["Grund", "Väggar"]


class TestDisplayLabels:
    """display_name_and_index()."""

    def test_default_label_gets_fallback_index(self):
        assert display_name_and_index(SECTION_LABEL, SECTION_LABEL, 3) == (SECTION_LABEL, "3")

    def test_numbered_label(self):
        assert display_name_and_index("Nivå 1 - 4", SECTION_LABEL, 1) == (SECTION_LABEL, "4")
        assert display_name_and_index("Nivå 1-12", SECTION_LABEL, 1) == (SECTION_LABEL, "12")

    def test_custom_name(self):
        assert display_name_and_index("Mark", SECTION_LABEL, 2) == ("Mark", None)
