# decision_engine/services/explainability/engine.py
"""
محرك الشرح

يولد شروحات للقرارات موجهة لجمهور ومستوى تفصيل محددين:
تحليل العوامل -> تحليل الثقة -> نص الشرح -> تحليل بديل (اختياري)
-> عناصر مرئية -> التنسيق -> الكاش والحفظ.

كل خطوة تفشل ترجع إلى قيمة احتياطية ويُسجل السبب في degraded.
"""
import asyncio
import json
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from decision_engine.core.errors import DecisionEngineError, NotFoundError, ValidationError, wrap_error
from decision_engine.core.retry import RetryPolicy, retry_async
from decision_engine.core.timeutils import utc_now_iso
from decision_engine.providers.text_generator import TextGenerator
from decision_engine.schemas.decisions import AudienceType, DecisionTrace
from decision_engine.schemas.explanations import (
    ConfidenceAnalysis,
    ConfidenceMetrics,
    Explanation,
    ExplanationFormat,
    Factor,
    FactorAnalysis,
)
from . import prompts
from .cache import ExplanationCache
from .formatting import build_visual_elements, format_explanation
from .records import DecisionRecords
from .trace import DecisionTraceBuilder

logger = logging.getLogger(__name__)

JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")

CONFIDENCE_BANDS: List[Tuple[float, str]] = [
    (0.9, "Very High"),
    (0.75, "High"),
    (0.6, "Moderate"),
    (0.4, "Low"),
]

FACTORS_PER_DETAIL_LEVEL = 3


def interpret_confidence(confidence: float) -> str:
    for threshold, label in CONFIDENCE_BANDS:
        if confidence >= threshold:
            return label
    return "Very Low"


def extract_json_array(text: Optional[str]) -> Optional[List[Any]]:
    """استخراج أول مصفوفة JSON من نص حر"""
    if not text:
        return None
    match = JSON_ARRAY_PATTERN.search(text)
    if not match:
        return None
    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, list) else None


def parse_factors(text: Optional[str], source: str, id_prefix: Optional[str] = None) -> Optional[List[Factor]]:
    items = extract_json_array(text)
    if items is None:
        return None

    factors = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not str(item.get("description") or "").strip():
            continue
        try:
            importance = float(item.get("importance", 0.5))
        except (TypeError, ValueError):
            importance = 0.5
        direction = "negative" if str(item.get("direction", "")).lower() == "negative" else "positive"
        factor_id = f"{id_prefix}_{uuid.uuid4().hex[:8]}" if id_prefix else f"{source}_factor_{index}"
        factors.append(Factor(
            id=factor_id,
            description=str(item["description"]).strip(),
            importance=min(1.0, max(0.0, importance)),
            direction=direction,
            source=source,
        ))
    return factors


def normalize_factors(factors: List[Factor], limit: int) -> List[Factor]:
    """توحيد الأهمية بحيث تكون القيمة العظمى 1 ثم الترتيب تنازلياً"""
    if not factors:
        return []
    top = max(f.importance for f in factors)
    if top > 0:
        factors = [f.model_copy(update={"importance": f.importance / top}) for f in factors]
    factors = sorted(factors, key=lambda f: f.importance, reverse=True)
    return factors[:limit]


def default_factor(decision: Dict[str, Any]) -> Factor:
    return Factor(
        id="synthetic_default",
        description=(
            f"The action {decision.get('action')} matched the {decision.get('decision_type')} "
            "context best among the available actions"
        ),
        importance=1.0,
        direction="positive",
        source="synthetic",
    )


def source_confidences(decision: Dict[str, Any], collaboration: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """الثقة لكل مصدر: المجموعة والسياسة ومساهمات الوكلاء"""
    result: Dict[str, float] = {}
    for name, recommendation in (decision.get("sources") or {}).items():
        if isinstance(recommendation, dict) and recommendation.get("confidence") is not None:
            result[name] = float(recommendation["confidence"])
    if collaboration:
        for agent_type, contribution in (collaboration.get("agent_contributions") or {}).items():
            if contribution.get("confidence") is not None:
                result[f"agent:{agent_type}"] = float(contribution["confidence"])
    return result


class ExplainabilityEngine:
    def __init__(
        self,
        records: DecisionRecords,
        text_generator: TextGenerator,
        cache: Optional[ExplanationCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        text_timeout: float = 30.0,
    ):
        self.records = records
        self.text_generator = text_generator
        self.cache = cache or ExplanationCache()
        self.retry_policy = retry_policy or RetryPolicy()
        self.text_timeout = text_timeout
        self.trace_builder = DecisionTraceBuilder(records)

    async def _generate(self, prompt: str, max_tokens: int, description: str) -> Optional[str]:
        """استدعاء خدمة النصوص مع إعادة المحاولة؛ يعيد None عند الفشل"""
        try:
            return await retry_async(
                lambda: asyncio.wait_for(self.text_generator.generate(prompt, max_tokens), self.text_timeout),
                self.retry_policy,
                description=description,
            )
        except Exception as e:
            error = wrap_error(e, context={"step": description})
            logger.warning(f"⚠️ {description} unavailable: [{error.error_type.value}] {error}")
            return None

    async def generate_decision_explanation(
        self,
        decision_id: str,
        audience_type: str = "business",
        include_counterfactuals: bool = False,
        detail_level: int = 3,
        format: str = "text",
    ) -> Explanation:
        """
        توليد شرح لقرار

        Args:
            decision_id: معرف القرار (أو معرف سجل تعاون)
            audience_type: technical, business, executive, regulatory, customer
            include_counterfactuals: إضافة تحليل بديل
            detail_level: من 1 إلى 5
            format: text, html, json, markdown

        Returns:
            Explanation (من الكاش إذا سبق توليده بنفس المعاملات)
        """
        if not 1 <= detail_level <= 5:
            raise ValidationError("detail_level must be between 1 and 5", context={"detail_level": detail_level})
        try:
            audience = AudienceType(audience_type)
        except ValueError:
            raise ValidationError(f"Unknown audience type: {audience_type}")
        try:
            output_format = ExplanationFormat(format)
        except ValueError:
            raise ValidationError(f"Unknown explanation format: {format}")

        cache_key = ExplanationCache.make_key(
            decision_id, audience.value, include_counterfactuals, detail_level, output_format.value
        )
        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Explanation cache hit: {cache_key}")
            return cached

        decision = await self.records.load_decision(decision_id)
        if decision is None:
            raise NotFoundError(f"Decision {decision_id} not found")
        collaboration = await self.records.load_collaboration(decision)

        degraded: List[str] = []

        factor_analysis = await self.analyze_factors(decision, collaboration, detail_level, degraded)
        confidence_analysis = await self.analyze_confidence(decision, collaboration, detail_level, degraded)

        text = await self._generate(
            prompts.explanation_prompt(decision, audience, detail_level, factor_analysis.factors, confidence_analysis),
            detail_level * 300,
            "explanation text",
        )
        if not text:
            degraded.append("explanation_text: text generation unavailable, templated explanation used")
            text = prompts.fallback_explanation(decision)

        counterfactual = None
        if include_counterfactuals:
            counterfactual = await self._generate(
                prompts.counterfactual_prompt(decision, detail_level),
                detail_level * 250,
                "counterfactual analysis",
            )
            if not counterfactual:
                degraded.append("counterfactual_analysis: text generation unavailable, templated analysis used")
                counterfactual = prompts.fallback_counterfactual(decision)

        explanation = Explanation(
            id=f"exp_{uuid.uuid4().hex}",
            decision_id=decision_id,
            decision_type=decision.get("decision_type"),
            action=decision.get("action"),
            audience_type=audience,
            detail_level=detail_level,
            format=output_format,
            explanation=format_explanation(text, output_format, decision, factor_analysis, confidence_analysis),
            factor_analysis=factor_analysis,
            confidence_analysis=confidence_analysis,
            counterfactual_analysis=counterfactual,
            visual_elements=build_visual_elements(decision, factor_analysis, confidence_analysis, counterfactual),
            degraded=degraded,
            timestamp=utc_now_iso(),
        )

        stored = await self.cache.set(cache_key, explanation)
        if stored is not explanation:
            # طلب متزامن سبقنا إلى نفس المفتاح
            return stored

        try:
            await self.records.save_explanation(explanation.id, explanation.model_dump(mode="json", exclude={"id"}))
            await self.records.link_explanation(decision, explanation.id)
        except DecisionEngineError as e:
            logger.error(f"❌ Failed to persist explanation {explanation.id} for {decision_id}: {e}")

        if degraded:
            logger.warning(f"⚠️ Explanation {explanation.id} degraded: {degraded}")
        else:
            logger.info(f"✅ Explanation {explanation.id} generated for {decision_id} ({audience.value}, {detail_level})")
        return explanation

    async def _extract(self, reasoning: str, source: str, detail_level: int) -> Optional[List[Factor]]:
        text = await self._generate(
            prompts.factor_extraction_prompt(reasoning, detail_level),
            500,
            f"factor extraction ({source})",
        )
        return parse_factors(text, source)

    async def analyze_factors(
        self,
        decision: Dict[str, Any],
        collaboration: Optional[Dict[str, Any]],
        detail_level: int,
        degraded: List[str],
    ) -> FactorAnalysis:
        sources: List[Tuple[str, str]] = []
        if decision.get("reasoning"):
            sources.append(("main", decision["reasoning"]))
        if collaboration:
            for agent_type, contribution in (collaboration.get("agent_contributions") or {}).items():
                if contribution.get("reasoning"):
                    sources.append((agent_type, contribution["reasoning"]))

        results = await asyncio.gather(*(self._extract(r, s, detail_level) for s, r in sources))
        factors = [f for result in results if result for f in result]

        if not factors:
            text = await self._generate(
                prompts.synthetic_factor_prompt(decision, detail_level),
                500,
                "synthetic factor generation",
            )
            factors = parse_factors(text, "synthetic", id_prefix="synthetic") or []
            if factors:
                degraded.append("factor_extraction: no factors extracted, synthesized from decision context")
            else:
                degraded.append("factor_synthesis: synthesis unavailable, default factor used")
                factors = [default_factor(decision)]

        total = len(factors)
        factors = normalize_factors(factors, FACTORS_PER_DETAIL_LEVEL * detail_level)
        return FactorAnalysis(
            factors=factors,
            primary_factor=factors[0] if factors else None,
            factor_count=total,
            included_factor_count=len(factors),
        )

    async def analyze_confidence(
        self,
        decision: Dict[str, Any],
        collaboration: Optional[Dict[str, Any]],
        detail_level: int,
        degraded: List[str],
    ) -> ConfidenceAnalysis:
        base = float(decision.get("confidence") or 0.0)
        per_source = source_confidences(decision, collaboration)
        values = np.array([base, *per_source.values()], dtype=float)
        std = float(np.std(values))

        analysis = ConfidenceAnalysis(
            overall_confidence=base,
            confidence_metrics=ConfidenceMetrics(
                min=float(values.min()),
                max=float(values.max()),
                avg=float(values.mean()),
                std_deviation=std,
            ),
            consensus_level=max(0.0, 1.0 - std),
            interpretation=interpret_confidence(base),
            uncertainty_level=1.0 - base,
            source_confidences=per_source,
        )

        text = await self._generate(
            prompts.confidence_factor_prompt(decision, analysis, detail_level),
            300,
            "confidence factors",
        )
        items = extract_json_array(text)
        factors = [str(item).strip() for item in items or [] if str(item).strip()]
        if not factors:
            degraded.append("confidence_factors: text generation unavailable, computed factors used")
            factors = [
                f"{analysis.interpretation} confidence ({base:.2f}) in the selected action",
                f"Consensus level {analysis.consensus_level:.2f} across {len(values)} confidence sources",
            ]
        return analysis.model_copy(update={"confidence_factors": factors})

    async def generate_decision_trace(
        self,
        decision_id: str,
        include_intermediate_steps: bool = False,
        detail_level: int = 3,
    ) -> DecisionTrace:
        return await self.trace_builder.generate_decision_trace(decision_id, include_intermediate_steps, detail_level)
