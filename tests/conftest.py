"""
Shared fixtures: in-memory database, config, lock registry and an
estimate builder.
"""
import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from costcontrol.config import CostControlConfig
from costcontrol.models import Base, Project
from costcontrol.infrastructure.locks import ProjectLockRegistry
from costcontrol.domain.services import SyncOrchestrator, CostControlEditService

from helpers import PROJECT_ID, EstimateBuilder

BASE_CONFIG = {
    "version": "1.0.0",
    "sync": {
        "recalculate_parents_default": True,
        "deadline_seconds": None,
        "amount_epsilon_cents": 1,
    },
    "locking": {
        "import_wait_seconds": 0.05,
        "edit_fail_fast": True,
    },
    "logging": {"level": "DEBUG"},
}


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Fresh in-memory database shared by every thread of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def session(session_factory):
    """Session with one project already committed."""
    s = session_factory()
    s.add(Project(id=PROJECT_ID, name="Test Project"))
    s.commit()
    yield s
    s.close()


# =============================================================================
# Configuration and services
# =============================================================================

@pytest.fixture
def make_config(tmp_path):
    """Build a CostControlConfig from BASE_CONFIG with section overrides."""
    def _make(**sections):
        data = {key: dict(value) if isinstance(value, dict) else value for key, value in BASE_CONFIG.items()}
        for section, values in sections.items():
            data.setdefault(section, {}).update(values)
        path = tmp_path / "cost_control_config.yaml"
        path.write_text(yaml.safe_dump(data))
        return CostControlConfig(path)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def lock_registry():
    return ProjectLockRegistry()


@pytest.fixture
def orchestrator(session, config, lock_registry):
    return SyncOrchestrator(session, config=config, lock_registry=lock_registry)


@pytest.fixture
def edit_service(session, config, lock_registry):
    return CostControlEditService(session, config=config, lock_registry=lock_registry)


# =============================================================================
# Estimate data
# =============================================================================

@pytest.fixture
def estimate(session):
    return EstimateBuilder(session)


@pytest.fixture
def basic_estimate(estimate):
    """One structure, one element, two detail items of 100 and 150."""
    estimate.structure("S1", name="Main House")
    estimate.element("E1", "S1", name="Substructure")
    estimate.detail("D1", "E1", quantity=2, rate=50, name="Excavation", order_index=0)
    estimate.detail("D2", "E1", quantity=1, rate=150, name="Concrete", order_index=1)
    estimate.commit()
    return estimate
