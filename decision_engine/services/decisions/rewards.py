# decision_engine/services/decisions/rewards.py
"""
دوال المكافأة: تحويل النتيجة الملاحظة إلى قيمة عددية

تختار الدالة من الإعدادات (REWARD_TYPE)، الافتراضي balanced.
"""
from enum import Enum
from typing import Any, Callable, Dict

RewardFunction = Callable[[Dict[str, Any]], float]


class RewardType(str, Enum):
    CONVERSION = "conversion"
    ENGAGEMENT = "engagement"
    EFFICIENCY = "efficiency"
    REVENUE = "revenue"
    SATISFACTION = "satisfaction"
    BALANCED = "balanced"


def _number(outcome: Dict[str, Any], key: str):
    value = outcome.get(key)
    if isinstance(value, bool):
        return None
    return value if isinstance(value, (int, float)) else None


def conversion_reward(outcome: Dict[str, Any]) -> float:
    reward = 0.0
    if outcome.get("converted"):
        reward += 1.0
        value = _number(outcome, "value")
        if value is not None:
            reward += min(value / 10000, 1.0)
    else:
        reward -= 0.1

    if outcome.get("progressed_to_next_stage"):
        reward += 0.3
    return reward


def engagement_reward(outcome: Dict[str, Any]) -> float:
    reward = 0.0
    score = _number(outcome, "engagement_score")
    if score is not None:
        reward += score / 100

    bonuses = {"clicked": 0.3, "opened": 0.2, "replied": 0.5, "shared": 0.4, "downloaded": 0.4}
    penalties = {"unsubscribed": 1.0, "complained": 1.5, "ignored": 0.2}
    reward += sum(v for k, v in bonuses.items() if outcome.get(k))
    reward -= sum(v for k, v in penalties.items() if outcome.get(k))
    return reward


def efficiency_reward(outcome: Dict[str, Any]) -> float:
    reward = 0.0
    time_to_response = _number(outcome, "time_to_response")
    if time_to_response is not None:
        reward += 1 - min(time_to_response / 86400, 1)  # يوم واحد كحد أقصى

    resources = _number(outcome, "resources_used")
    if resources is not None:
        reward += 1 - min(resources / 10, 1)

    effort = _number(outcome, "effort_required")
    if outcome.get("achieved") and effort is not None:
        reward += 1 / max(1, effort)
    return reward


def revenue_reward(outcome: Dict[str, Any]) -> float:
    reward = 0.0
    revenue = _number(outcome, "revenue")
    if revenue is not None:
        reward += min(revenue / 10000, 2.0)

    ltv = _number(outcome, "expected_ltv")
    if ltv is not None:
        reward += min(ltv / 50000, 1.0) * 0.5

    cost = _number(outcome, "cost")
    if cost is not None:
        reward -= min(cost / 1000, 0.5)

    roi = _number(outcome, "roi")
    if roi is not None:
        reward += min(roi / 10, 1.0)
    return reward


def satisfaction_reward(outcome: Dict[str, Any]) -> float:
    reward = 0.0
    score = _number(outcome, "satisfaction_score")
    if score is not None:
        reward += (score - 5) / 5  # مقياس 0-10 إلى -1..1

    if outcome.get("positive"):
        reward += 0.5
    if outcome.get("referral"):
        reward += 1.0
    if outcome.get("testimonial"):
        reward += 0.8
    if outcome.get("complaint"):
        reward -= 1.0
    if outcome.get("negative"):
        reward -= 0.5
    return reward


BALANCED_WEIGHTS = {
    RewardType.CONVERSION: 0.3,
    RewardType.ENGAGEMENT: 0.2,
    RewardType.EFFICIENCY: 0.15,
    RewardType.REVENUE: 0.25,
    RewardType.SATISFACTION: 0.1,
}


def balanced_reward(outcome: Dict[str, Any]) -> float:
    return sum(REWARD_FUNCTIONS[t](outcome) * w for t, w in BALANCED_WEIGHTS.items())


REWARD_FUNCTIONS: Dict[RewardType, RewardFunction] = {
    RewardType.CONVERSION: conversion_reward,
    RewardType.ENGAGEMENT: engagement_reward,
    RewardType.EFFICIENCY: efficiency_reward,
    RewardType.REVENUE: revenue_reward,
    RewardType.SATISFACTION: satisfaction_reward,
    RewardType.BALANCED: balanced_reward,
}


def get_reward_function(reward_type: str) -> RewardFunction:
    try:
        return REWARD_FUNCTIONS[RewardType(reward_type)]
    except ValueError:
        raise ValueError(f"Unknown reward type: {reward_type}")
