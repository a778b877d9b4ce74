"""
Pytest configuration and fixtures for amr-ingest tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
from collections.abc import Callable
from pathlib import Path
from typing import Generator

import pytest

from amr_ingest.batch import CheckpointStore, CollectingNotificationSink, ImportPipeline
from amr_ingest.core.config import EngineSettings
from amr_ingest.core.models import AuthorizationContext, SourceFile
from amr_ingest.reference import InMemoryReferenceData, ReferenceDataLoader
from amr_ingest.warehouse.ledger import InMemoryImportLedger
from amr_ingest.warehouse.store import InMemoryPersistenceStore

PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# REFERENCE AND SETTINGS FIXTURES
# =======================

@pytest.fixture(scope="session")
def config_dir() -> Path:
    """Path to the project's config directory"""
    return CONFIG_DIR


@pytest.fixture(scope="session")
def reference() -> InMemoryReferenceData:
    """
    Reference data loaded from config/reference.yaml

    Returns:
        Organisms, antibiotics and CLSI/EUCAST breakpoint rules
    """
    return ReferenceDataLoader(CONFIG_DIR / "reference.yaml").load()


@pytest.fixture(scope="function")
def settings(tmp_path) -> EngineSettings:
    """
    Engine settings for tests: CLSI 2024 defaults, two workers

    Returns:
        EngineSettings pointing at the project's config files
    """
    return EngineSettings(
        max_workers=2,
        default_breakpoint_standard="CLSI",
        default_breakpoint_version="2024",
        reference_path=CONFIG_DIR / "reference.yaml",
        synonyms_path=CONFIG_DIR / "synonyms.yaml",
        templates_dir=CONFIG_DIR / "templates",
    )


@pytest.fixture(scope="function")
def auth() -> AuthorizationContext:
    """Authorization context of a lab user allowed to write both tables"""
    return AuthorizationContext(actor="lab-user-17", organization="regional-lab")


# =======================
# PIPELINE FIXTURES
# =======================

@pytest.fixture(scope="function")
def store() -> InMemoryPersistenceStore:
    return InMemoryPersistenceStore()


@pytest.fixture(scope="function")
def ledger() -> InMemoryImportLedger:
    return InMemoryImportLedger()


@pytest.fixture(scope="function")
def notifier() -> CollectingNotificationSink:
    return CollectingNotificationSink()


@pytest.fixture(scope="function")
def pipeline(settings, reference, store, ledger, notifier) -> ImportPipeline:
    """
    Import pipeline wired to in-memory storage and a collecting notifier

    Returns:
        ImportPipeline using the synonym table from config/synonyms.yaml
    """
    return ImportPipeline.from_settings(
        settings,
        reference=reference,
        store=store,
        ledger=ledger,
        notifier=notifier,
        checkpoints=CheckpointStore(),
    )


@pytest.fixture(scope="function")
def make_csv() -> Callable[..., SourceFile]:
    """
    Build a SourceFile from CSV text

    Returns:
        Function (text, name="lab_export.csv", **options) -> SourceFile
    """
    def _make(text: str, name: str = "lab_export.csv", **options) -> SourceFile:
        return SourceFile(name=name, content=text.encode("utf-8"), **options)

    return _make


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance (the test is skipped without Docker)
    """
    testcontainers_postgres = pytest.importorskip("testcontainers.postgres")
    try:
        container = testcontainers_postgres.PostgresContainer(
            image="postgres:16.2-alpine",
            username="test_pipeline",
            password="test_password",
            dbname="test_amr",
        )
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="function")
def db_pool(postgres_container) -> Generator:
    """
    Provide an open connection pool against the test container

    Yields:
        DatabaseConnectionPool
    """
    from amr_ingest.warehouse.connection import DatabaseConnectionPool

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_amr",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=4,
    )
    pool.open()
    yield pool
    pool.close()


@pytest.fixture(scope="function")
def clean_db(db_pool) -> Generator:
    """
    Provide a freshly created schema for each test

    Yields:
        DatabaseConnectionPool with empty isolate, result and ledger tables
    """
    from amr_ingest.warehouse.schema_mgmt import SchemaManager

    manager = SchemaManager(db_pool)
    manager.drop_schema()
    manager.ensure_schema()
    yield db_pool


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(CONFIG_DIR, "test.env")

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
