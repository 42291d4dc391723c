"""Shared pytest fixtures for all tests."""

import pytest
from shapely.geometry import Point, box

from datasearches.core.config import Settings
from datasearches.core.logging import SearchLog
from datasearches.core.models import FieldInfo, FieldType
from datasearches.engine.jobs import GeoprocessingEngine
from datasearches.engine.session import MapSession
from datasearches.engine.workspace import Workspace
from datasearches.export.pipeline import ExportContext

POLL_INTERVAL = 0.01


@pytest.fixture
def workspace():
    """Create an in-memory workspace for testing.

    Creates a fresh database for each test function.
    """
    ws = Workspace.open(":memory:")
    yield ws
    ws.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(poll_interval_seconds=POLL_INTERVAL)


@pytest.fixture
def session(workspace: Workspace) -> MapSession:
    return MapSession(workspace)


@pytest.fixture
def engine(workspace: Workspace, session: MapSession):
    """Geoprocessing engine bound to the test workspace and session."""
    eng = GeoprocessingEngine(workspace, session, poll_interval=POLL_INTERVAL)
    yield eng
    eng.close()


@pytest.fixture
def search_log() -> SearchLog:
    """A search log that only keeps its lines in memory."""
    return SearchLog()


@pytest.fixture
def export_ctx(workspace, session, settings, search_log):
    ctx = ExportContext.create(workspace, session, settings, log=search_log)
    yield ctx
    ctx.close()


@pytest.fixture
def sites(workspace: Workspace) -> str:
    """Polygon feature class of three 10x10 sites along the x axis.

    OBJECTID  Site  Area  Status   x extent
    1         A     10    Open     0-10
    2         A     5     closed   20-30
    3         B     7     Open     40-50
    """
    workspace.create_feature_class(
        "Sites",
        [
            FieldInfo(name="Site", alias="Site Name", field_type=FieldType.STRING, length=50),
            FieldInfo(name="Area", field_type=FieldType.DOUBLE),
            FieldInfo(name="Status", field_type=FieldType.STRING),
        ],
    )
    workspace.insert_rows(
        "Sites",
        [
            {"Shape": box(0, 0, 10, 10), "Site": "A", "Area": 10.0, "Status": "Open"},
            {"Shape": box(20, 0, 30, 10), "Site": "A", "Area": 5.0, "Status": "closed"},
            {"Shape": box(40, 0, 50, 10), "Site": "B", "Area": 7.0, "Status": "Open"},
        ],
    )
    return "Sites"


@pytest.fixture
def targets(workspace: Workspace) -> str:
    """Point feature class with a single target at (12, 5)."""
    workspace.create_feature_class(
        "Targets", [FieldInfo(name="Name", field_type=FieldType.STRING)]
    )
    workspace.insert_rows("Targets", [{"Shape": Point(12, 5), "Name": "Centre"}])
    return "Targets"
