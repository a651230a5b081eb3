# decision_engine/services/decisions/ensemble.py
"""
منسق مجموعة الوكلاء

كل وكيل يُسأل بالتوازي عبر خدمة توليد النصوص، ثم تدمج المساهمات:
الأعلى ثقة يفوز، وتسجل الخلافات (إجراء مختلف أو فرق ثقة كبير)
مع حلها في سجل تعاون يحفظ في agent_collaborations.
"""
import asyncio
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from decision_engine.core.errors import AIServiceError, ProcessingError
from decision_engine.core.retry import RetryPolicy, retry_async
from decision_engine.core.timeutils import utc_now_iso
from decision_engine.database.store import DocumentStore
from decision_engine.providers.text_generator import TextGenerator
from decision_engine.schemas.decisions import AgentRecommendation, DecisionRequest, RecommendationSource
from decision_engine.services.safety.audit_log import sanitize_context

logger = logging.getLogger(__name__)

COLLABORATIONS_COLLECTION = "agent_collaborations"

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


class AgentType(str, Enum):
    STRATEGY = "strategy"
    RESEARCH = "research"
    QUALIFICATION = "qualification"
    COMMUNICATION = "communication"
    ETHICS_ADVISOR = "ethics_advisor"
    RISK_ASSESSMENT = "risk_assessment"
    MARKET_INTELLIGENCE = "market_intelligence"
    PERSONALIZATION = "personalization"


AGENT_ROLES = {
    AgentType.STRATEGY: "Strategy Agent responsible for developing high-level strategies for lead generation and nurturing",
    AgentType.RESEARCH: "Research Agent responsible for gathering and analyzing information about prospects and markets",
    AgentType.QUALIFICATION: "Qualification Agent responsible for evaluating lead quality and potential",
    AgentType.COMMUNICATION: "Communication Agent responsible for optimizing messaging and channel selection",
    AgentType.ETHICS_ADVISOR: "Ethics Advisor Agent responsible for providing ethical guidance and compliance checks",
    AgentType.RISK_ASSESSMENT: "Risk Assessment Agent responsible for identifying and quantifying potential risks",
    AgentType.MARKET_INTELLIGENCE: "Market Intelligence Agent responsible for analyzing market trends and competitive landscape",
    AgentType.PERSONALIZATION: "Personalization Agent responsible for tailoring approaches to individual prospects",
}

DEFAULT_AGENTS = [AgentType.STRATEGY, AgentType.ETHICS_ADVISOR, AgentType.RISK_ASSESSMENT]

AGENT_MAP: Dict[str, List[AgentType]] = {
    "LEAD_QUALIFICATION": [
        AgentType.QUALIFICATION,
        AgentType.RESEARCH,
        AgentType.ETHICS_ADVISOR,
        AgentType.RISK_ASSESSMENT,
    ],
    "CHANNEL_SELECTION": [
        AgentType.COMMUNICATION,
        AgentType.PERSONALIZATION,
        AgentType.ETHICS_ADVISOR,
    ],
    "MARKET_ENTRY": [
        AgentType.STRATEGY,
        AgentType.MARKET_INTELLIGENCE,
        AgentType.RISK_ASSESSMENT,
    ],
}

CONFIDENCE_SPREAD_THRESHOLD = 0.3


class AgentEnsemble(ABC):
    """واجهة مجموعة الوكلاء"""

    @abstractmethod
    async def recommend(self, request: DecisionRequest) -> AgentRecommendation:
        pass


def parse_agent_response(text: str, allowed_actions: Sequence[str]) -> Optional[Dict[str, Any]]:
    """استخراج مساهمة الوكيل من النص (None إذا كانت غير صالحة)"""
    match = JSON_OBJECT_PATTERN.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    action = data.get("action")
    confidence = data.get("confidence")
    reasoning = data.get("reasoning")
    if not isinstance(action, str) or action not in allowed_actions:
        return None
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        return None
    if not isinstance(reasoning, str) or not reasoning.strip():
        return None

    alternatives = data.get("alternative_actions", data.get("alternativeActions", []))
    if not isinstance(alternatives, list):
        alternatives = []

    return {
        "action": action,
        "confidence": float(confidence),
        "reasoning": reasoning.strip(),
        "alternative_actions": [str(a) for a in alternatives],
        "considerations": data.get("considerations") if isinstance(data.get("considerations"), dict) else {},
    }


def identify_conflicts(contributions: Mapping[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """الخلافات بين الوكلاء: إجراءات مختلفة، أو فرق ثقة كبير على نفس الإجراء"""
    conflicts: List[Dict[str, Any]] = []
    groups: Dict[str, List[str]] = {}
    for agent, contribution in contributions.items():
        groups.setdefault(contribution["action"], []).append(agent)

    actions = list(groups)
    for i in range(len(actions)):
        for j in range(i + 1, len(actions)):
            conflicts.append({
                "id": f"conflict_{uuid.uuid4().hex[:8]}",
                "type": "action_disagreement",
                "description": "Disagreement on recommended action",
                "agents": {actions[i]: groups[actions[i]], actions[j]: groups[actions[j]]},
                "timestamp": utc_now_iso(),
            })

    for action, agents in groups.items():
        if len(agents) < 2:
            continue
        confidences = [contributions[a]["confidence"] for a in agents]
        if max(confidences) - min(confidences) > CONFIDENCE_SPREAD_THRESHOLD:
            conflicts.append({
                "id": f"conflict_{uuid.uuid4().hex[:8]}",
                "type": "confidence_disagreement",
                "description": f'Significant confidence difference for action "{action}"',
                "action": action,
                "confidence_range": {"min": min(confidences), "max": max(confidences)},
                "agents": [{"agent_type": a, "confidence": contributions[a]["confidence"]} for a in agents],
                "timestamp": utc_now_iso(),
            })
    return conflicts


class TextAgentEnsemble(AgentEnsemble):
    """مجموعة وكلاء تعمل عبر خدمة توليد النصوص"""

    def __init__(
        self,
        text_generator: TextGenerator,
        store: DocumentStore,
        agent_map: Optional[Dict[str, List[AgentType]]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_tokens: int = 1000,
    ):
        self.text_generator = text_generator
        self.store = store
        self.agent_map = agent_map or AGENT_MAP
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_tokens = max_tokens

    def agents_for(self, decision_type: str) -> List[AgentType]:
        return list(self.agent_map.get(decision_type, DEFAULT_AGENTS))

    def build_prompt(self, agent_type: AgentType, request: DecisionRequest) -> str:
        role = AGENT_ROLES.get(agent_type, f"{agent_type.value} specialist")
        return (
            f"You are the {role}.\n\n"
            f"Decision type: {request.decision_type}\n"
            f"Context:\n{json.dumps(sanitize_context(request.context), indent=2, default=str)}\n\n"
            f"Constraints:\n{json.dumps(request.constraints, indent=2, default=str)}\n\n"
            f"Available actions: {', '.join(request.action_names)}\n\n"
            "Choose exactly one of the available actions. Respond in the following JSON format:\n"
            "{\n"
            '  "action": "recommended_action",\n'
            '  "confidence": 0.85,\n'
            '  "reasoning": "Detailed explanation of your reasoning",\n'
            '  "alternative_actions": ["alternative_1"],\n'
            '  "considerations": {"key": "value"}\n'
            "}\n"
        )

    async def _contribution(self, agent_type: AgentType, request: DecisionRequest) -> Optional[Dict[str, Any]]:
        prompt = self.build_prompt(agent_type, request)
        try:
            text = await retry_async(
                lambda: self.text_generator.generate(prompt, self.max_tokens),
                self.retry_policy,
                description=f"{agent_type.value} agent contribution",
            )
        except AIServiceError as e:
            logger.warning(f"⚠️ Agent {agent_type.value} unavailable: {e}")
            return None

        contribution = parse_agent_response(text, request.action_names)
        if contribution is None:
            logger.warning(f"⚠️ Unusable response from agent {agent_type.value}")
            return None

        contribution["agent_type"] = agent_type.value
        contribution["timestamp"] = utc_now_iso()
        return contribution

    async def recommend(self, request: DecisionRequest) -> AgentRecommendation:
        collaboration_id = f"collab_{uuid.uuid4().hex}"
        agent_types = self.agents_for(request.decision_type)
        start_time = utc_now_iso()

        results = await asyncio.gather(*(self._contribution(a, request) for a in agent_types))
        contributions = {a.value: c for a, c in zip(agent_types, results) if c is not None}
        if not contributions:
            raise ProcessingError(
                "No agent produced a usable recommendation",
                context={"decision_type": request.decision_type, "agents": [a.value for a in agent_types]},
            )

        conflicts = identify_conflicts(contributions)
        lead_agent, lead = max(contributions.items(), key=lambda kv: kv[1]["confidence"])
        resolutions = [
            {
                "conflict_id": conflict["id"],
                "resolution": lead["action"],
                "strategy": "highest_confidence",
                "reasoning": f"{lead_agent} had the highest confidence ({lead['confidence']:.2f})",
                "timestamp": utc_now_iso(),
            }
            for conflict in conflicts
        ]

        alternatives: List[str] = []
        for contribution in contributions.values():
            for candidate in [contribution["action"], *contribution["alternative_actions"]]:
                if candidate != lead["action"] and candidate not in alternatives:
                    alternatives.append(candidate)

        recommendation = AgentRecommendation(
            action=lead["action"],
            confidence=lead["confidence"],
            reasoning=lead["reasoning"],
            alternative_actions=alternatives,
            source=RecommendationSource.ENSEMBLE.value,
            collaboration_id=collaboration_id,
        )

        await self.store.set(COLLABORATIONS_COLLECTION, collaboration_id, {
            "decision_type": request.decision_type,
            "context": sanitize_context(request.context),
            "agent_types": [a.value for a in agent_types],
            "start_time": start_time,
            "end_time": utc_now_iso(),
            "agent_contributions": contributions,
            "conflicts": conflicts,
            "resolutions": resolutions,
            "result": recommendation.model_dump(mode="json"),
        })

        logger.info(
            f"🤝 Ensemble {collaboration_id}: {len(contributions)}/{len(agent_types)} agents, "
            f"{len(conflicts)} conflicts -> {lead['action']} ({lead['confidence']:.2f})"
        )
        return recommendation
