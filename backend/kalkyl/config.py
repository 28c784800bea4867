"""
Application configuration: the single source of truth for environment-driven
settings and the fixed labels shared by the editor, the codec and the exports.

Import from here rather than reading os.environ in services.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


# ── Fixed labels ───────────────────────────────────────────────────────────────

# Presentation-only marker for "no bookkeeping account selected".
# The tree itself stores None; this string only crosses the export/import boundary.
UNSET_ACCOUNT_LABEL: str = "Välj konto"

# Default node names; the editor shows them with a running index.
SECTION_LABEL: str = "Nivå 1"
SUBSECTION_LABEL: str = "Nivå 2"
SUB_SUBSECTION_LABEL: str = "Nivå 3"

STATUS_ACTIVE: str = "Aktiv"
STATUS_CLOSED: str = "Avslutad"
CALCULATION_STATUSES: tuple[str, ...] = (STATUS_ACTIVE, STATUS_CLOSED)

# Save-precondition messages shown to the user
MSG_NO_SECTIONS: str = "Kalkylen måste innehålla minst ett avsnitt med data för att kunna sparas."
MSG_NON_POSITIVE_BID: str = "Kalkylsumman måste vara större än 0 för att kunna sparas."

# Notices published by the API
MSG_SAVED: str = "Kalkylen sparades framgångsrikt!"
MSG_DELETED: str = "Kalkylen togs bort."
MSG_NOT_FOUND: str = "Kalkylen kunde inte hittas."
MSG_EXPORT_FAILED: str = "Kunde inte exportera kalkylen. Försök igen."

# Minimum query length before a CO2 reference search is sent
CO2_SEARCH_MIN_CHARS: int = 3

# Notification lifetime (seconds)
NOTIFICATION_TTL_S: float = 3.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    """Runtime settings read from the process environment."""

    database_url: str = ""
    log_level: str = "INFO"
    json_logs: bool = True
    cors_origins: list[str] = field(default_factory=list)
    reference_data_url: str = ""
    reference_data_timeout_s: float = 5.0
    reference_data_retries: int = 3
    currency_suffix: str = "kr"
    default_rate: float = 8.0
    default_unit: str = "m2"
    download_dir: str = "/tmp/downloads"


def load_settings() -> Settings:
    cors_default = "http://localhost:3000,http://localhost:5173"
    return Settings(
        database_url=os.getenv("DATABASE_URL", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_logs=os.getenv("LOG_FORMAT", "json").lower() != "text",
        cors_origins=[
            o.strip() for o in os.getenv("CORS_ORIGINS", cors_default).split(",") if o.strip()
        ],
        reference_data_url=os.getenv("REFERENCE_DATA_URL", "").rstrip("/"),
        reference_data_timeout_s=_env_float("REFERENCE_DATA_TIMEOUT", 5.0),
        reference_data_retries=max(1, _env_int("REFERENCE_DATA_RETRIES", 3)),
        currency_suffix=os.getenv("CURRENCY_SUFFIX", "kr"),
        default_rate=_env_float("DEFAULT_RATE", 8.0),
        default_unit=os.getenv("DEFAULT_UNIT", "m2"),
        download_dir=os.getenv("DOWNLOAD_DIR", "/tmp/downloads"),
    )


settings = load_settings()
