# decision_engine/services/explainability/prompts.py
"""قوالب الـ prompts حسب الجمهور ومستوى التفصيل"""
import json
from typing import Any, Dict, List

from decision_engine.schemas.decisions import AudienceType
from decision_engine.schemas.explanations import ConfidenceAnalysis, Factor

AUDIENCE_INSTRUCTIONS: Dict[AudienceType, str] = {
    AudienceType.TECHNICAL: (
        "You are explaining this decision to a TECHNICAL audience who wants the detailed mechanics "
        "of how it was made. Include specifics about the decision process, factors and confidence "
        "metrics, using precise technical language."
    ),
    AudienceType.BUSINESS: (
        "You are explaining this decision to a BUSINESS audience who cares about practical "
        "implications and business value. Focus on outcomes and impact, in clear language "
        "without technical jargon."
    ),
    AudienceType.EXECUTIVE: (
        "You are explaining this decision to an EXECUTIVE audience who needs a concise, high-level "
        "view. Focus on strategic value and the key factors only. Be brief."
    ),
    AudienceType.REGULATORY: (
        "You are explaining this decision to a REGULATORY audience who needs to understand "
        "compliance and ethical considerations. Focus on fairness, transparency and adherence "
        "to policy, in formal and precise language."
    ),
    AudienceType.CUSTOMER: (
        "You are explaining this decision to a CUSTOMER who wants to know why this action was "
        "taken. Use simple, friendly, non-technical language focused on the value to them."
    ),
}

DETAIL_INSTRUCTIONS: Dict[int, str] = {
    1: "Provide a MINIMAL explanation in one sentence covering only the essential point.",
    2: "Provide a BRIEF explanation in 2-3 sentences covering the key points.",
    3: "Provide a STANDARD explanation in 1-2 paragraphs covering the main factors and reasoning.",
    4: "Provide a DETAILED explanation in 2-3 paragraphs covering the process, factors and confidence.",
    5: (
        "Provide a COMPREHENSIVE multi-paragraph explanation covering all factors, confidence, "
        "alternatives considered and implications."
    ),
}

FACTOR_FORMAT = """Return your analysis as a JSON array of factors, where each factor has:
- "description": a brief description (1-2 sentences)
- "importance": a score between 0 and 1
- "direction": "positive" or "negative"

Example:
[
  {"description": "The lead has shown high engagement with previous content", "importance": 0.8, "direction": "positive"},
  {"description": "The lead's industry has low conversion rates", "importance": 0.4, "direction": "negative"}
]"""


def _context_json(context: Dict[str, Any]) -> str:
    return json.dumps(context or {}, indent=2, default=str, sort_keys=True)


def factors_to_request(detail_level: int) -> int:
    return min(5, detail_level * 2)


def factor_extraction_prompt(reasoning: str, detail_level: int) -> str:
    return (
        "Extract the key factors that influenced the following decision reasoning:\n\n"
        f'"{reasoning}"\n\n'
        "Identify the main factors, their relative importance, and whether each had a positive "
        "or negative influence on the decision.\n\n"
        f"{FACTOR_FORMAT}\n\n"
        f"Extract the {factors_to_request(detail_level)} most important factors."
    )


def synthetic_factor_prompt(decision: Dict[str, Any], detail_level: int) -> str:
    alternatives = ", ".join(decision.get("alternative_actions") or []) or "None"
    return (
        "Based on the following decision information, generate plausible factors that likely "
        "influenced this decision:\n\n"
        f"Decision Type: {decision.get('decision_type')}\n"
        f"Selected Action: {decision.get('action')}\n"
        f"Confidence: {decision.get('confidence')}\n"
        f"Alternative Actions: {alternatives}\n\n"
        f"Context: {_context_json(decision.get('context'))}\n\n"
        f"Generate {factors_to_request(detail_level)} plausible factors.\n\n"
        f"{FACTOR_FORMAT}"
    )


def confidence_factor_prompt(decision: Dict[str, Any], analysis: ConfidenceAnalysis, detail_level: int) -> str:
    metrics = analysis.confidence_metrics
    return (
        "Based on the following decision information and confidence metrics, list short factors "
        "that explain the confidence level:\n\n"
        f"Decision Type: {decision.get('decision_type')}\n"
        f"Selected Action: {decision.get('action')}\n"
        f"Overall Confidence: {analysis.overall_confidence:.2f}\n"
        f"Confidence Range: {metrics.min:.2f} to {metrics.max:.2f}\n"
        f"Consensus Level: {analysis.consensus_level:.2f}\n\n"
        f"Return a JSON array of at most {max(1, int(detail_level * 1.5))} strings."
    )


def explanation_prompt(
    decision: Dict[str, Any],
    audience_type: AudienceType,
    detail_level: int,
    factors: List[Factor],
    confidence: ConfidenceAnalysis,
) -> str:
    alternatives = ", ".join(decision.get("alternative_actions") or []) or "None"
    factor_lines = "\n".join(
        f"- {f.description} (Importance: {f.importance:.2f}, Direction: {f.direction})" for f in factors
    ) or "- None identified"
    confidence_lines = "\n".join(f"- {c}" for c in confidence.confidence_factors)

    return (
        "Generate a clear explanation for why the system made the following decision:\n\n"
        f"Decision Type: {decision.get('decision_type')}\n"
        f"Selected Action: {decision.get('action')}\n"
        f"Confidence: {decision.get('confidence')}\n"
        f"Alternative Actions: {alternatives}\n\n"
        f"Key factors that influenced this decision:\n{factor_lines}\n\n"
        "Confidence analysis:\n"
        f"- Overall confidence: {confidence.overall_confidence:.2f}\n"
        f"- Interpretation: {confidence.interpretation}\n"
        f"- Uncertainty level: {confidence.uncertainty_level:.2f}\n"
        f"{confidence_lines}\n\n"
        f"Context information:\n{_context_json(decision.get('context'))}\n\n"
        f"{AUDIENCE_INSTRUCTIONS[audience_type]}\n\n"
        f"{DETAIL_INSTRUCTIONS[detail_level]}\n"
    )


def counterfactual_prompt(decision: Dict[str, Any], detail_level: int) -> str:
    alternatives = ", ".join(decision.get("alternative_actions") or []) or "None"
    depth = "a comprehensive" if detail_level >= 4 else "a concise"
    return (
        "Generate a counterfactual analysis for the following decision:\n\n"
        f"Decision Type: {decision.get('decision_type')}\n"
        f"Selected Action: {decision.get('action')}\n"
        f"Confidence: {decision.get('confidence')}\n"
        f"Alternative Actions: {alternatives}\n\n"
        f"Context information:\n{_context_json(decision.get('context'))}\n\n"
        "Explain:\n"
        "1. Which changes to the inputs would have produced a different decision?\n"
        "2. Under what circumstances would each alternative action have been selected?\n"
        "3. What is the smallest change that flips this decision to the top alternative?\n\n"
        f"Provide {depth} counterfactual analysis."
    )


def fallback_explanation(decision: Dict[str, Any]) -> str:
    confidence = float(decision.get("confidence") or 0.0)
    return (
        f'The system selected "{decision.get("action")}" with {round(confidence * 100)}% confidence '
        "based on the available information and decision criteria."
    )


def fallback_counterfactual(decision: Dict[str, Any]) -> str:
    alternatives = ", ".join(decision.get("alternative_actions") or []) or "None"
    return (
        "If key factors had been different, the system might have selected one of the "
        f"alternative actions: {alternatives}."
    )
