"""
conftest.py - Shared pytest fixtures for the Kalkyl backend test suite.

Most tests are pure unit tests over the calculation services. API tests run
against the FastAPI app through TestClient with the ``get_db`` dependency
pointed at an in-memory SQLite database (aiosqlite), so no PostgreSQL server
or network access is needed.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``kalkyl.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import os
import sys

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any kalkyl imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Sample calculation
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_calculation():
    """
    Two sections, one sub-subsection and one option.

    Amounts:
      Mark     / Schakt   rows 10×100 + 2×250, Detalj 4×25  -> 1 600
      Stomme   / Betong   row  3×1000                        -> 3 000
      Option   2×500                                         -> 1 000
      budget_excl_rate = 5 600, rate 8 % -> fixed 448, bid 6 048

    CO2: 50 + 10 + 5 + 200 = 265 kg against a 2 kg/m² × 100 m² = 200 kg budget.
    """
    from kalkyl.services.calculation_model import (
        Calculation, OptionRow, Row, Section, Subsection, SubSubsection,
    )
    return Calculation(
        name="Villa Ekbacken",
        project="Ekbacken 1",
        rate=8.0,
        area=100.0,
        co2_budget=2.0,
        created_by="Anna Berg",
        sections=[
            Section(
                id=1,
                name="Mark",
                expanded=True,
                subsections=[
                    Subsection(
                        id=1,
                        name="Schakt",
                        expanded=True,
                        rows=[
                            Row(id=1, description="Schaktning", quantity=10, unit="m3",
                                price_per_unit=100, co2=50),
                            Row(id=2, description="Bortforsling", quantity=2, unit="st",
                                price_per_unit=250, co2=10, account="4010", note="Deponi"),
                        ],
                        sub_subsections=[
                            SubSubsection(
                                id=1,
                                name="Detalj",
                                rows=[Row(id=1, description="Handschakt", quantity=4, unit="tim",
                                          price_per_unit=25, co2=5)],
                            ),
                        ],
                    ),
                ],
            ),
            Section(
                id=2,
                name="Stomme",
                subsections=[
                    Subsection(
                        id=1,
                        name="Betong",
                        rows=[Row(id=1, description="Platta", quantity=3, unit="m3",
                                  price_per_unit=1000, co2=200)],
                    ),
                ],
            ),
        ],
        options=[OptionRow(id=1, description="Carport", quantity=2, unit="st", price_per_unit=500)],
    )


@pytest.fixture
def sample_payload():
    """Native-shape payload with one section, one subsection and one row (10 × 100)."""
    return {
        "name": "Förråd",
        "project": "Ekbacken 1",
        "rate": 8,
        "area": 20,
        "co2Budget": 0,
        "sections": [
            {
                "id": 1,
                "name": "Mark",
                "subsections": [
                    {
                        "id": 1,
                        "name": "Schakt",
                        "rows": [
                            {"id": 1, "description": "Schaktning", "quantity": 10,
                             "unit": "m3", "pricePerUnit": 100, "co2": 50},
                        ],
                    },
                ],
            },
        ],
        "options": [],
    }


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------

@pytest.fixture
def client(monkeypatch, tmp_path):
    """
    TestClient over the full app.

    - get_db yields sessions on a shared in-memory SQLite database
    - exports land in tmp_path
    - a fresh NotificationService per test (``client.app.state.notifications``)
    """
    from fastapi.testclient import TestClient
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool

    import kalkyl.main as main_module
    from kalkyl.config import settings
    from kalkyl.db import Base, get_db
    from kalkyl.models import orm_models  # noqa: F401
    from kalkyl.services.notifications import NotificationService

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _init_db():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    monkeypatch.setattr(main_module, "init_db", _init_db)
    monkeypatch.setattr(settings, "download_dir", str(tmp_path))

    app = main_module.app
    app.dependency_overrides[get_db] = _get_test_db
    app.state.notifications = NotificationService()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
