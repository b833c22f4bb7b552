"""Functional test bootstrap.

Each test gets its own file-backed SQLite database under ``tmp_path`` with
the migrations applied, so transactions and ``BEGIN IMMEDIATE`` locking
behave as they do against a real file. ``TEST_DATABASE_URL`` points at that
file so code paths that resolve the engine from configuration (the HTTP app,
the tool dispatcher) see the same database.
"""

from __future__ import annotations

from typing import Optional

import pytest

from menu_catalog.config import AppConfig, load_config
from menu_catalog.db.base import get_engine, reset_engine
from menu_catalog.db.migrations_runner import apply_migrations
from menu_catalog.logic import ordering
from menu_catalog.logic import repository_products, repository_sections
from menu_catalog.logic.containers import ByName, Container, ContainerSelector
from menu_catalog.logic.events import get_buffered_events
from menu_catalog.logic.positions import is_dense
from menu_catalog.models import Product, ProductDraft, Section


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite+pysqlite:///{tmp_path / 'catalog.db'}"
    monkeypatch.setenv("TEST_DATABASE_URL", url)
    monkeypatch.setenv("ORDERING_RETRY_BACKOFF_MS", "0")
    monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_S", "30")
    reset_engine()
    yield url
    reset_engine()


@pytest.fixture
def engine(db_url: str):
    eng = get_engine(db_url)
    apply_migrations(eng)
    return eng


@pytest.fixture
def settings(db_url: str) -> AppConfig:
    return load_config()


@pytest.fixture(autouse=True)
def clear_events():
    get_buffered_events(clear=True)
    yield
    get_buffered_events(clear=True)


class CatalogBuilder:
    """Seeds sections and products and reads container state back."""

    def __init__(self, engine, settings: AppConfig):
        self.engine = engine
        self.settings = settings

    def section(self, name: str, *sub_sections: str) -> Section:
        with self.engine.begin() as conn:
            section = repository_sections.create_section(conn, name=name, has_subsections=bool(sub_sections))
            for sub in sub_sections:
                repository_sections.create_sub_section(conn, section_id=section.id, name=sub)
            return repository_sections.get_section_by_id(conn, section.id)

    def product(self, name: str, section: str, sub_section: Optional[str] = None, price: str = "9.50") -> Product:
        selector = ContainerSelector(ByName(section), ByName(sub_section) if sub_section else None)
        return ordering.create_product(
            ProductDraft(name=name, price=price), selector, engine=self.engine, settings=self.settings
        )

    def get(self, name: str) -> Optional[Product]:
        with self.engine.connect() as conn:
            return repository_products.get_product(conn, ByName(name))

    def names(self, container: Container) -> list[str]:
        with self.engine.connect() as conn:
            return [p.name for p in repository_products.list_container_products(conn, container)]

    def positions(self, container: Container) -> list[int]:
        with self.engine.connect() as conn:
            return sorted(repository_products.member_positions(conn, container).values())

    def containers(self) -> list[Container]:
        with self.engine.connect() as conn:
            out = []
            for section in repository_sections.list_sections(conn):
                out.append(Container(section.id))
                out.extend(Container(section.id, sub.id) for sub in section.sub_sections)
            return out

    def assert_all_dense(self) -> None:
        with self.engine.connect() as conn:
            for container in self.containers():
                positions = repository_products.member_positions(conn, container)
                assert is_dense(positions.values()), (container.key, positions)
                assert repository_products.stray_unused_positions(conn, container) == [], container.key


@pytest.fixture
def catalog(engine, settings) -> CatalogBuilder:
    return CatalogBuilder(engine, settings)
