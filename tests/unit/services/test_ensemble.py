# tests/unit/services/test_ensemble.py
import pytest

from decision_engine.core.errors import ProcessingError
from decision_engine.core.retry import NO_RETRY
from decision_engine.schemas.decisions import DecisionRequest
from decision_engine.services.decisions.ensemble import (
    COLLABORATIONS_COLLECTION,
    DEFAULT_AGENTS,
    AgentType,
    TextAgentEnsemble,
    identify_conflicts,
    parse_agent_response,
)
from tests.fakes import FailingTextGenerator, FakeTextGenerator, agent_reply

ACTIONS = ["qualify_lead", "nurture_lead", "disqualify_lead"]


# ============== تحليل ردود الوكلاء ==============

def test_parse_agent_response_extracts_embedded_json():
    parsed = parse_agent_response(agent_reply("nurture_lead", 0.6, "Needs time", ["qualify_lead"]), ACTIONS)

    assert parsed["action"] == "nurture_lead"
    assert parsed["confidence"] == 0.6
    assert parsed["alternative_actions"] == ["qualify_lead"]
    assert parsed["considerations"] == {}


@pytest.mark.parametrize("text", [
    "no json here",
    '{"action": "qualify_lead", "confidence": 0.5',
    '{"action": "launch_rocket", "confidence": 0.5, "reasoning": "why not"}',
    '{"action": "qualify_lead", "confidence": 1.5, "reasoning": "sure"}',
    '{"action": "qualify_lead", "confidence": true, "reasoning": "sure"}',
    '{"action": "qualify_lead", "confidence": 0.5, "reasoning": "   "}',
])
def test_parse_agent_response_rejects_invalid(text):
    assert parse_agent_response(text, ACTIONS) is None


def test_parse_agent_response_accepts_camel_case_alternatives():
    text = '{"action": "qualify_lead", "confidence": 1, "reasoning": "ok", "alternativeActions": ["nurture_lead"]}'

    assert parse_agent_response(text, ACTIONS)["alternative_actions"] == ["nurture_lead"]


def test_identify_conflicts():
    contributions = {
        "qualification": {"action": "qualify_lead", "confidence": 0.9},
        "research": {"action": "qualify_lead", "confidence": 0.4},
        "risk_assessment": {"action": "nurture_lead", "confidence": 0.6},
    }

    conflicts = identify_conflicts(contributions)

    types = sorted(c["type"] for c in conflicts)
    assert types == ["action_disagreement", "confidence_disagreement"]
    spread = next(c for c in conflicts if c["type"] == "confidence_disagreement")
    assert spread["confidence_range"] == {"min": 0.4, "max": 0.9}


def test_identify_conflicts_unanimous():
    contributions = {
        "strategy": {"action": "qualify_lead", "confidence": 0.7},
        "ethics_advisor": {"action": "qualify_lead", "confidence": 0.8},
    }

    assert identify_conflicts(contributions) == []


# ============== المجموعة ==============

@pytest.mark.asyncio
async def test_highest_confidence_agent_wins(store, lead_request):
    generator = FakeTextGenerator(rules=[
        ("Qualification Agent", agent_reply("qualify_lead", 0.9, "Budget confirmed")),
        ("Research Agent", agent_reply("nurture_lead", 0.6, "Early stage", ["disqualify_lead"])),
        ("Ethics Advisor", agent_reply("qualify_lead", 0.7, "No concerns")),
        ("Risk Assessment", "I cannot decide"),
    ])
    ensemble = TextAgentEnsemble(generator, store, retry_policy=NO_RETRY)

    recommendation = await ensemble.recommend(lead_request)

    assert recommendation.action == "qualify_lead"
    assert recommendation.confidence == 0.9
    assert recommendation.reasoning == "Budget confirmed"
    assert recommendation.alternative_actions == ["nurture_lead", "disqualify_lead"]
    assert len(generator.prompts) == 4
    assert all("sk-live-123" not in p for p in generator.prompts)

    record = await store.get(COLLABORATIONS_COLLECTION, recommendation.collaboration_id)
    assert set(record["agent_contributions"]) == {"qualification", "research", "ethics_advisor"}
    assert record["conflicts"][0]["type"] == "action_disagreement"
    assert record["resolutions"][0]["resolution"] == "qualify_lead"
    assert record["context"]["api_key"] == "[REDACTED]"


@pytest.mark.asyncio
async def test_all_agents_failing_raises(store, lead_request):
    ensemble = TextAgentEnsemble(FailingTextGenerator(), store, retry_policy=NO_RETRY)

    with pytest.raises(ProcessingError):
        await ensemble.recommend(lead_request)

    assert await store.list_all(COLLABORATIONS_COLLECTION) == []


def test_unknown_decision_type_uses_default_agents(store):
    ensemble = TextAgentEnsemble(FakeTextGenerator(), store)

    assert ensemble.agents_for("SOMETHING_NEW") == DEFAULT_AGENTS
    assert ensemble.agents_for("CHANNEL_SELECTION")[0] == AgentType.COMMUNICATION


@pytest.mark.asyncio
async def test_prompt_lists_available_actions(store):
    generator = FakeTextGenerator(default=agent_reply("email", 0.8))
    ensemble = TextAgentEnsemble(generator, store, retry_policy=NO_RETRY)
    request = DecisionRequest(decision_type="CHANNEL_SELECTION", actions=["email", {"action": "call"}])

    recommendation = await ensemble.recommend(request)

    assert recommendation.action == "email"
    assert "Available actions: email, call" in generator.prompts[0]
