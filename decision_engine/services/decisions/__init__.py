# decision_engine/services/decisions/__init__.py
from .arbiter import DecisionArbiter
from .ensemble import AGENT_MAP, AgentEnsemble, AgentType, TextAgentEnsemble
from .policy import PolicyEngine, TabularPolicyEngine
from .rewards import RewardType, get_reward_function
from .service import DECISION_LOGS_COLLECTION, DecisionService

__all__ = [
    "AGENT_MAP",
    "AgentEnsemble",
    "AgentType",
    "DECISION_LOGS_COLLECTION",
    "DecisionArbiter",
    "DecisionService",
    "PolicyEngine",
    "RewardType",
    "TabularPolicyEngine",
    "TextAgentEnsemble",
    "get_reward_function",
]
