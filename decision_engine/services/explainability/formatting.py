# decision_engine/services/explainability/formatting.py
import html
from typing import Any, Callable, Dict, Optional, Union

from decision_engine.schemas.explanations import ConfidenceAnalysis, ExplanationFormat, FactorAnalysis

POSITIVE_COLOR = "#4CAF50"
NEGATIVE_COLOR = "#F44336"

GAUGE_THRESHOLDS = [
    {"value": 0.4, "color": "#F44336", "label": "Low"},
    {"value": 0.6, "color": "#FFC107", "label": "Medium"},
    {"value": 0.75, "color": "#4CAF50", "label": "High"},
    {"value": 0.9, "color": "#2196F3", "label": "Very High"},
]

LABEL_LENGTH = 30


def _to_html(text: str, **_) -> str:
    paragraphs = [p for p in text.split("\n\n") if p.strip()]
    body = "".join(f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs)
    return f'<div class="explanation">{body}</div>'


def _to_markdown(text: str, decision: Dict[str, Any], factor_analysis: FactorAnalysis,
                 confidence_analysis: ConfidenceAnalysis) -> str:
    lines = [
        f"## Decision: {decision.get('action')}",
        "",
        text,
        "",
        f"**Confidence:** {round(confidence_analysis.overall_confidence * 100)}% "
        f"({confidence_analysis.interpretation})",
    ]
    if factor_analysis.factors:
        lines += ["", "### Key factors", ""]
        lines += [
            f"- {'+' if f.direction == 'positive' else '-'} {f.description} ({f.importance:.2f})"
            for f in factor_analysis.factors
        ]
    return "\n".join(lines)


def _to_json(text: str, decision: Dict[str, Any], factor_analysis: FactorAnalysis,
             confidence_analysis: ConfidenceAnalysis) -> Dict[str, Any]:
    return {
        "explanation": text,
        "action": decision.get("action"),
        "confidence": confidence_analysis.overall_confidence,
        "interpretation": confidence_analysis.interpretation,
        "factors": [f.model_dump() for f in factor_analysis.factors],
    }


FORMATTERS: Dict[ExplanationFormat, Callable[..., Union[str, Dict[str, Any]]]] = {
    ExplanationFormat.TEXT: lambda text, **_: text,
    ExplanationFormat.HTML: _to_html,
    ExplanationFormat.MARKDOWN: _to_markdown,
    ExplanationFormat.JSON: _to_json,
}


def format_explanation(
    text: str,
    output_format: ExplanationFormat,
    decision: Dict[str, Any],
    factor_analysis: FactorAnalysis,
    confidence_analysis: ConfidenceAnalysis,
) -> Union[str, Dict[str, Any]]:
    """تحويل نص الشرح إلى الصيغة المطلوبة"""
    return FORMATTERS[ExplanationFormat(output_format)](
        text,
        decision=decision,
        factor_analysis=factor_analysis,
        confidence_analysis=confidence_analysis,
    )


def _short_label(description: str) -> str:
    if len(description) <= LABEL_LENGTH:
        return description
    return description[:LABEL_LENGTH] + "..."


def build_visual_elements(
    decision: Dict[str, Any],
    factor_analysis: FactorAnalysis,
    confidence_analysis: ConfidenceAnalysis,
    counterfactual_analysis: Optional[str],
) -> Dict[str, Any]:
    """أوصاف عناصر مرئية كبيانات منظمة (بدون رسم)"""
    elements: Dict[str, Any] = {
        "factor_importance_chart": {
            "type": "bar_chart",
            "title": "Factor Importance",
            "description": "Relative importance of decision factors",
            "data": [
                {
                    "label": _short_label(f.description),
                    "value": f.importance,
                    "color": POSITIVE_COLOR if f.direction == "positive" else NEGATIVE_COLOR,
                }
                for f in factor_analysis.factors
            ],
        },
        "confidence_gauge": {
            "type": "gauge",
            "title": "Decision Confidence",
            "description": "Overall confidence level",
            "data": {
                "value": confidence_analysis.overall_confidence,
                "min": 0,
                "max": 1,
                "thresholds": GAUGE_THRESHOLDS,
            },
        },
        "decision_tree": None,
    }

    if counterfactual_analysis:
        alternatives = list(decision.get("alternative_actions") or [])[:2]
        elements["decision_tree"] = {
            "type": "decision_tree",
            "title": "Decision Paths",
            "description": "Selected path and the top alternatives",
            "data": {
                "nodes": [
                    {"id": "root", "label": "Decision Point"},
                    {"id": "selected", "label": decision.get("action"), "type": "selected"},
                    *({"id": f"alt{i}", "label": alt, "type": "alternative"} for i, alt in enumerate(alternatives)),
                ],
                "edges": [
                    {"from": "root", "to": "selected", "label": "Selected Path"},
                    *({"from": "root", "to": f"alt{i}", "label": "Alternative Path"} for i in range(len(alternatives))),
                ],
            },
        }

    return elements
