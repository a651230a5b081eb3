# tests/unit/routers/test_decisions_api.py
import pytest

from decision_engine.main import app

DECISIONS_URL = "/api/v1/decisions"

LEAD_DECISION = {
    "decision_type": "LEAD_QUALIFICATION",
    "context": {"lead_id": "lead_7", "password": "hunter2"},
    "actions": ["qualify_lead", "nurture_lead", "disqualify_lead"],
}


@pytest.mark.asyncio
async def test_generate_decision_with_explanation(api):
    response = await api.post(DECISIONS_URL, json=LEAD_DECISION)

    assert response.status_code == 200
    data = response.json()
    assert data["action"] == "qualify_lead"
    assert data["selected_source"] == "ensemble"
    assert data["confidence"] == 0.9
    assert data["explanation"]["explanation"] == "The lead is ready to buy."
    assert data["explanation"]["decision_id"] == data["id"]


@pytest.mark.asyncio
async def test_generate_decision_validates_body(api):
    response = await api.post(DECISIONS_URL, json={"decision_type": "LEAD_QUALIFICATION", "actions": []})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_blocked_decision_returns_boundary_check(api):
    await api.post("/api/v1/boundaries", params={"actor_id": "admin"}, json={
        "name": "Consent",
        "boundary_type": "compliance",
        "operation_types": ["LEAD_QUALIFICATION"],
        "severity": "critical",
        "required_consent": True,
    })

    response = await api.post(DECISIONS_URL, json=LEAD_DECISION)

    data = response.json()
    assert response.status_code == 200
    assert data["selected_source"] == "blocked"
    assert data["action"] is None
    assert data["boundary_check"]["allowed"] is False
    assert "shutdown" in data["boundary_check"]["enforcement_actions"]


@pytest.mark.asyncio
async def test_trace_and_explanation_endpoints(api):
    decision = (await api.post(DECISIONS_URL, json={**LEAD_DECISION, "explainable": False})).json()

    trace = await api.get(
        f"{DECISIONS_URL}/{decision['id']}/trace",
        params={"include_intermediate_steps": "true", "detail_level": 4},
    )
    assert trace.status_code == 200
    steps = trace.json()["steps"]
    assert steps[0]["type"] == "initialization"
    assert steps[-1]["description"] == "Selected action: qualify_lead"
    assert len([s for s in steps if s["type"] == "agent_contribution"]) == 4

    explanation = await api.get(
        f"{DECISIONS_URL}/{decision['id']}/explanation",
        params={"audience_type": "executive", "format": "markdown"},
    )
    assert explanation.status_code == 200
    assert explanation.json()["explanation"].startswith("## Decision: qualify_lead")


@pytest.mark.asyncio
async def test_unknown_decision_returns_404(api):
    assert (await api.get(f"{DECISIONS_URL}/missing/trace")).status_code == 404
    assert (await api.get(f"{DECISIONS_URL}/missing/explanation")).status_code == 404


@pytest.mark.asyncio
async def test_invalid_query_parameters_return_422(api):
    assert (await api.get(f"{DECISIONS_URL}/d1/trace", params={"detail_level": 0})).status_code == 422
    assert (await api.get(f"{DECISIONS_URL}/d1/explanation", params={"audience_type": "investors"})).status_code == 422


@pytest.mark.asyncio
async def test_outcome_updates_policy(api):
    decision = (await api.post(DECISIONS_URL, json={**LEAD_DECISION, "explainable": False})).json()

    response = await api.post(
        f"{DECISIONS_URL}/{decision['id']}/outcome",
        json={"observed_result": {"converted": True}},
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Policy updated successfully", "reward": 0.3}

    duplicate = await api.post(
        f"{DECISIONS_URL}/{decision['id']}/outcome",
        json={"observed_result": {"converted": False}},
    )
    assert duplicate.json() == {"success": False, "message": "Outcome already recorded", "reward": 0.3}

    missing = await api.post(f"{DECISIONS_URL}/unknown/outcome", json={"observed_result": {}})
    assert missing.json()["success"] is False
    assert missing.json()["message"] == "Experience not found"


@pytest.mark.asyncio
async def test_services_not_ready_returns_503(api):
    app.state.services = None

    response = await api.post(DECISIONS_URL, json=LEAD_DECISION)

    assert response.status_code == 503
