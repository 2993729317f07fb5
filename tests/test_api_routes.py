"""Tests for API routes."""

from unittest.mock import Mock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from checkcell.api import routes
from checkcell.api.routes import router, set_session
from checkcell.errors import HostIOError
from checkcell.workflow import AuditSession

SPIKE_SHEETS = {
    "Sheet1": {
        "A1": "10",
        "A2": "1000",
        "A3": "10",
        "A4": "15",
        "B1": "=SUM(A1:A4)",
    }
}


@pytest.fixture
def test_client(test_settings):
    """Create a test client whose sessions use the test settings."""
    app = FastAPI()
    app.include_router(router, prefix="/api")

    set_session(None)
    with patch("checkcell.api.routes.AuditSession", lambda host: AuditSession(host, test_settings)):
        yield TestClient(app)
    set_session(None)


@pytest.fixture
def loaded_client(test_client):
    """Create a test client with the spike workbook loaded."""
    response = test_client.post("/api/workbook", json={"sheets": SPIKE_SHEETS})
    assert response.status_code == 200
    return test_client


class TestHealthEndpoint:
    """Test the /api/health endpoint."""

    def test_health(self, test_client):
        """Test health reports whether a workbook is loaded."""
        response = test_client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["workbook_loaded"] is False


class TestWorkbookEndpoints:
    """Test loading and reading workbooks."""

    def test_load_and_read(self, loaded_client):
        """Test a loaded workbook can be read back."""
        response = loaded_client.get("/api/workbook")

        assert response.status_code == 200
        assert response.json()["sheets"]["Sheet1"]["B1"] == "=SUM(A1:A4)"

    def test_load_requires_source(self, test_client):
        """Test an empty request is rejected."""
        response = test_client.post("/api/workbook", json={})

        assert response.status_code == 400

    def test_load_invalid_cell(self, test_client):
        """Test an invalid cell name is rejected."""
        response = test_client.post("/api/workbook", json={"sheets": {"Sheet1": {"1A": "3"}}})

        assert response.status_code == 400

    def test_load_google_spreadsheet(self, test_client):
        """Test a spreadsheet ID opens a Google Sheets host."""
        with patch("checkcell.sheets.client.GoogleSheetsHost") as host_cls:
            host_cls.return_value = Mock(spreadsheet_id="sheet-123")
            response = test_client.post("/api/workbook", json={"spreadsheet_id": "sheet-123"})

        assert response.status_code == 200
        host_cls.assert_called_once_with("sheet-123")
        assert test_client.get("/api/workbook").json() == {"spreadsheet_id": "sheet-123"}

    def test_no_workbook(self, test_client):
        """Test session endpoints need a loaded workbook."""
        assert test_client.get("/api/state").status_code == 404
        assert test_client.post("/api/analyze").status_code == 404


class TestWorkflowEndpoints:
    """Test the audit workflow over HTTP."""

    def test_analyze_and_flag(self, loaded_client):
        """Test analysis followed by flagging."""
        response = loaded_client.post("/api/analyze", json={"time_budget_ms": 60000})
        assert response.status_code == 200
        assert response.json()["state"] == "analyzed"
        assert response.json()["flaggable_count"] == 1

        response = loaded_client.post("/api/flag")
        data = response.json()
        assert data["state"] == "flagged"
        assert data["flagged_cell"] == "Sheet1!A2"
        assert data["score"] == 1

    def test_mark_ok_finishes(self, loaded_client):
        """Test confirming the only suspicious cell ends the audit."""
        loaded_client.post("/api/analyze")
        loaded_client.post("/api/flag")

        response = loaded_client.post("/api/mark-ok")

        assert response.json()["message"] == "No bugs remain."
        assert response.json()["state"] == "idle"

    def test_fix(self, loaded_client):
        """Test fixing the flagged cell updates the workbook."""
        loaded_client.post("/api/analyze")
        loaded_client.post("/api/flag")

        response = loaded_client.post("/api/fix", json={"content": "20"})

        assert response.status_code == 200
        assert loaded_client.get("/api/workbook").json()["sheets"]["Sheet1"]["A2"] == "20"

    def test_invalid_transition(self, loaded_client):
        """Test actions out of order return 409."""
        response = loaded_client.post("/api/mark-ok")

        assert response.status_code == 409
        assert "idle" in response.json()["detail"]

    def test_graph_error(self, test_client):
        """Test a circular workbook returns 400."""
        test_client.post(
            "/api/workbook",
            json={"sheets": {"Sheet1": {"A1": "=B1", "B1": "=A1", "C1": "1", "C2": "2"}}},
        )

        response = test_client.post("/api/analyze")

        assert response.status_code == 400
        assert "Circular reference" in response.json()["detail"]

    def test_host_error(self, loaded_client):
        """Test host failures return 502."""
        with patch.object(routes._session, "analyze", side_effect=HostIOError("quota exceeded")):
            response = loaded_client.post("/api/analyze")

        assert response.status_code == 502
        assert response.json()["detail"] == "quota exceeded"

    def test_shade_and_reset(self, loaded_client):
        """Test shading and resetting."""
        loaded_client.post("/api/analyze")

        assert loaded_client.post("/api/shade").status_code == 200
        assert loaded_client.get("/api/state").json()["clear_coloring_enabled"]

        response = loaded_client.post("/api/reset")
        assert response.json()["state"] == "idle"
        assert not loaded_client.get("/api/state").json()["clear_coloring_enabled"]

    def test_clear_coloring(self, loaded_client):
        """Test clearing colors."""
        loaded_client.post("/api/analyze")
        loaded_client.post("/api/shade")

        response = loaded_client.post("/api/clear-coloring")

        assert response.status_code == 200
        assert response.json()["state"] == "analyzed"

    def test_cancel_when_idle(self, loaded_client):
        """Test cancelling with no pass running reports nothing to cancel."""
        response = loaded_client.post("/api/cancel")

        assert response.status_code == 200
        assert response.json() == {"cancelled": False}

    def test_cancel_running_pass(self, loaded_client):
        """Test cancelling forwards to the running pass."""
        with patch.object(routes._session, "cancel_analysis", return_value=True) as cancel:
            response = loaded_client.post("/api/cancel")

        cancel.assert_called_once()
        assert response.json() == {"cancelled": True}


class TestViewEndpoints:
    """Test read-only views."""

    def test_state(self, loaded_client):
        """Test the state view reports available actions."""
        loaded_client.post("/api/analyze")
        loaded_client.post("/api/flag")

        data = loaded_client.get("/api/state").json()

        assert data["state"] == "flagged"
        assert data["flagged_cell"] == "Sheet1!A2"
        assert data["mark_as_ok_enabled"]
        assert not data["analyze_enabled"]
        assert data["draws_completed"] == data["draws_requested"] == 300

    def test_scores(self, loaded_client):
        """Test the ranked score list."""
        loaded_client.post("/api/analyze")

        data = loaded_client.get("/api/scores", params={"limit": 2}).json()

        assert len(data) == 2
        assert data[0]["cell"] == "Sheet1!A2"
        assert data[0]["flaggable"]

    def test_influence(self, loaded_client):
        """Test the influence report."""
        loaded_client.post("/api/analyze")

        data = loaded_client.get("/api/influence").json()

        assert data["count"] == 1
        assert data["outputs"][0]["inputs"] == ["Sheet1!A1:A4"]

    def test_audit_log(self, loaded_client):
        """Test the audit trail."""
        loaded_client.post("/api/analyze")
        loaded_client.post("/api/flag")

        data = loaded_client.get("/api/audit", params={"limit": 1}).json()

        assert data["count"] == 1
        assert data["entries"][0]["action"] == "flag"
        assert data["entries"][0]["cell"] == "Sheet1!A2"
