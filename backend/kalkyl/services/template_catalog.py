"""
Built-in calculation templates.

Each entry is ``{id, title, description, popular, template}`` where
``template`` is ``{name, sections: [{name, rows?}]}`` and template rows use the
camelCase row keys (``pricePerUnit``). Templates are read-only; a new
Calculation is seeded from one with instantiate().
"""
import copy
from typing import Any, Dict, List, Optional

from kalkyl.services.calculation_model import Calculation, calculation_from_template

TemplateMetadata = Dict[str, Any]


_TEMPLATES: List[TemplateMetadata] = [
    {
        "id": "empty",
        "title": "Tom kalkyl",
        "description": "Starta från en tom kalkyl och bygg upp ditt projekt från grunden",
        "popular": False,
        "template": {
            "name": "Empty Template",
            "sections": [
                {"name": "Section 1"},
                {"name": "Section 2"},
                {"name": "Section 3"},
            ],
        },
    },
    {
        "id": "generalContracting",
        "title": "General Contracting",
        "description": "Komplett mall för byggprojekt med mark, stomme och installationer",
        "popular": True,
        "template": {
            "name": "General Contracting",
            "sections": [
                {
                    "name": "Mark",
                    "rows": [
                        {"description": "Markarbeten", "quantity": 3400, "unit": "m2", "pricePerUnit": 280},
                        {"description": "Betongplatta på mark", "quantity": 3400, "unit": "m2",
                         "pricePerUnit": 890, "account": "4010"},
                        {"description": "Schaktning", "quantity": 2800, "unit": "m3", "pricePerUnit": 145},
                        {"description": "Dränering", "quantity": 420, "unit": "m", "pricePerUnit": 320},
                        {"description": "Återfyllning", "quantity": 1200, "unit": "m3", "pricePerUnit": 95},
                        {"description": "VA-anslutningar", "quantity": 1, "unit": "st", "pricePerUnit": 485000},
                    ],
                },
                {"name": "Stomme"},
                {"name": "Yttertak"},
                {"name": "Fasader"},
                {"name": "Stomkompl./rumsbildn."},
                {"name": "Inv ytskikt/rumskompl."},
                {"name": "UE"},
            ],
        },
    },
    {
        "id": "residential",
        "title": "Bostäder flerfamiljshus",
        "description": "Optimerad för bostadsprojekt med standardrum och installationer",
        "popular": True,
        "template": {
            "name": "Residential Building",
            "sections": [
                {
                    "name": "Mark",
                    "rows": [
                        {"description": "Markberedning", "quantity": 1000, "unit": "m2", "pricePerUnit": 45},
                        {"description": "Schaktning", "quantity": 600, "unit": "m3", "pricePerUnit": 180},
                        {"description": "Grusbädd", "quantity": 400, "unit": "m3", "pricePerUnit": 320},
                    ],
                },
                {
                    "name": "Grund",
                    "rows": [
                        {"description": "Betongplatta", "quantity": 500, "unit": "m2",
                         "pricePerUnit": 890, "account": "4010"},
                        {"description": "Armering", "quantity": 5, "unit": "ton",
                         "pricePerUnit": 12000, "co2": 1850},
                    ],
                },
                {"name": "Stomme"},
                {"name": "Tak"},
                {"name": "Fasad"},
                {"name": "Innerväggar"},
                {"name": "VS"},
                {"name": "El"},
                {"name": "Ventilation"},
                {"name": "Ytskikt"},
            ],
        },
    },
    {
        "id": "renovation",
        "title": "Renovering & ombyggnad",
        "description": "Anpassad för renoveringsprojekt med rivning och befintliga konstruktioner",
        "popular": False,
        "template": {
            "name": "Renovation",
            "sections": [
                {
                    "name": "Rivning",
                    "rows": [
                        {"description": "Rivning innerväggar", "quantity": 150, "unit": "m2", "pricePerUnit": 450},
                        {"description": "Sanering", "quantity": 200, "unit": "m2", "pricePerUnit": 320},
                    ],
                },
                {"name": "Stomkomplettering"},
                {"name": "Nya innerväggar"},
                {"name": "Ytskikt"},
                {"name": "VS"},
                {"name": "El"},
                {"name": "Ventilation"},
            ],
        },
    },
    {
        "id": "industrial",
        "title": "Industribyggnad",
        "description": "Mall för industribyggnader med kompletta sektioner och standardvärden",
        "popular": True,
        "template": {
            "name": "Industrial Building",
            "sections": [
                {
                    "name": "Mark och grund",
                    "rows": [
                        {"description": "Markarbeten", "quantity": 5000, "unit": "m2", "pricePerUnit": 65},
                        {"description": "Betongplatta", "quantity": 4500, "unit": "m2", "pricePerUnit": 950},
                    ],
                },
                {
                    "name": "Stomme",
                    "rows": [
                        {"description": "Stålstomme", "quantity": 80, "unit": "ton", "pricePerUnit": 25000},
                        {"description": "Fasadbalkar", "quantity": 40, "unit": "ton", "pricePerUnit": 28000},
                    ],
                },
                {"name": "Tak"},
                {"name": "Fasad"},
                {"name": "Portar"},
                {"name": "Kontor och social del"},
                {"name": "Installationer"},
            ],
        },
    },
    {
        "id": "office",
        "title": "Kontorsbyggnad",
        "description": "Mall för kontorsprojekt med fokus på inredning och tekniska system",
        "popular": False,
        "template": {
            "name": "Office Building",
            "sections": [
                {"name": "Mark"},
                {"name": "Grund"},
                {"name": "Stomme"},
                {"name": "Tak"},
                {"name": "Fasad"},
                {
                    "name": "Innerväggar och dörrar",
                    "rows": [
                        {"description": "Gipsväggar", "quantity": 800, "unit": "m2", "pricePerUnit": 850},
                        {"description": "Glaspartier", "quantity": 120, "unit": "m2", "pricePerUnit": 3500},
                    ],
                },
                {"name": "Tak och golv"},
                {"name": "VS"},
                {"name": "El"},
                {"name": "Ventilation"},
                {"name": "IT-infrastruktur"},
            ],
        },
    },
    {
        "id": "infrastructure",
        "title": "Infrastruktur",
        "description": "Mall för infrastrukturprojekt med vägar, ledningar och anläggningar",
        "popular": False,
        "template": {
            "name": "Infrastructure",
            "sections": [
                {
                    "name": "Markarbeten",
                    "rows": [
                        {"description": "Schakt och fyllning", "quantity": 5000, "unit": "m3", "pricePerUnit": 180},
                        {"description": "Befintlig ledning", "quantity": 500, "unit": "m", "pricePerUnit": 1200},
                    ],
                },
                {"name": "Väg och gata"},
                {"name": "VA-ledningar"},
                {"name": "Dränering"},
                {"name": "Belysning"},
                {"name": "Grönområden"},
            ],
        },
    },
]


def all_templates() -> List[TemplateMetadata]:
    """Metadata for every template, in catalog order. Callers get copies."""
    return copy.deepcopy(_TEMPLATES)


def template_ids() -> List[str]:
    return [t["id"] for t in _TEMPLATES]


def get_template_metadata(template_id: str) -> Optional[TemplateMetadata]:
    entry = next((t for t in _TEMPLATES if t["id"] == template_id), None)
    return copy.deepcopy(entry) if entry else None


def get_template(template_id: str) -> Optional[Dict[str, Any]]:
    entry = get_template_metadata(template_id)
    return entry["template"] if entry else None


def create_custom_template(name: str, section_names: List[str]) -> Dict[str, Any]:
    """Ad-hoc template with one empty section per name."""
    return {"name": name, "sections": [{"name": section_name} for section_name in section_names]}


def instantiate(
    template_id: str,
    name: str = "",
    project: str = "",
    rate: Optional[float] = None,
) -> Optional[Calculation]:
    """New Calculation seeded from a built-in template; None for an unknown id."""
    template = get_template(template_id)
    if template is None:
        return None
    return calculation_from_template(template, name=name, project=project, rate=rate)
