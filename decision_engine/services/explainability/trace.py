# decision_engine/services/explainability/trace.py
import json
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from decision_engine.core.errors import NotFoundError, ValidationError
from decision_engine.core.timeutils import parse_iso, to_iso, utc_now_iso
from decision_engine.schemas.decisions import DecisionTrace, TraceStep
from .records import DecisionRecords

STEP_OFFSET_SECONDS = 1


def format_agent_type(agent_type: str) -> str:
    return " ".join(word.capitalize() for word in str(agent_type).split("_"))


class DecisionTraceBuilder:
    """إعادة بناء خطوات القرار بالترتيب الزمني"""

    def __init__(self, records: DecisionRecords):
        self.records = records

    async def generate_decision_trace(
        self,
        decision_id: str,
        include_intermediate_steps: bool = False,
        detail_level: int = 3,
    ) -> DecisionTrace:
        if not 1 <= detail_level <= 5:
            raise ValidationError("detail_level must be between 1 and 5")

        decision = await self.records.load_decision(decision_id)
        if decision is None:
            raise NotFoundError(f"Decision {decision_id} not found")
        collaboration = await self.records.load_collaboration(decision)

        steps = self.build_steps(decision, collaboration, include_intermediate_steps, detail_level)

        duration_ms = None
        if collaboration and collaboration.get("start_time") and collaboration.get("end_time"):
            delta = parse_iso(collaboration["end_time"]) - parse_iso(collaboration["start_time"])
            duration_ms = delta.total_seconds() * 1000

        return DecisionTrace(
            decision_id=decision_id,
            decision_type=decision.get("decision_type"),
            result={"action": decision.get("action"), "confidence": decision.get("confidence")},
            steps=steps,
            step_count=len(steps),
            duration_ms=duration_ms,
            generated_at=utc_now_iso(),
        )

    def build_steps(
        self,
        decision: Dict[str, Any],
        collaboration: Optional[Dict[str, Any]],
        include_intermediate_steps: bool,
        detail_level: int,
    ) -> List[TraceStep]:
        start_time = (collaboration or {}).get("start_time") or decision.get("timestamp")

        def stamp(real: Optional[str], offset: int) -> Tuple[str, bool]:
            if real:
                return real, False
            if not start_time:
                return utc_now_iso(), True
            return to_iso(parse_iso(start_time) + timedelta(seconds=offset * STEP_OFFSET_SECONDS)), True

        steps: List[TraceStep] = []

        timestamp, estimated = stamp(start_time, 0)
        steps.append(TraceStep(
            id="step_init",
            type="initialization",
            description=f"Decision process initiated for {decision.get('decision_type')}",
            timestamp=timestamp,
            timestamp_estimated=estimated,
        ))

        timestamp, estimated = stamp(None, 1)
        steps.append(TraceStep(
            id="step_context",
            type="context_processing",
            description="Context information processed",
            timestamp=timestamp,
            timestamp_estimated=estimated,
            details={"context": json.loads(json.dumps(decision.get("context") or {}, default=str))}
            if detail_level >= 4 else None,
        ))

        if include_intermediate_steps and collaboration:
            contributions = list((collaboration.get("agent_contributions") or {}).items())
            contributions.sort(key=lambda item: item[1].get("timestamp") or "")
            for index, (agent_type, contribution) in enumerate(contributions):
                timestamp, estimated = stamp(contribution.get("timestamp"), 2 + index)
                details = {
                    "agent_type": agent_type,
                    "action": contribution.get("action"),
                    "confidence": contribution.get("confidence"),
                }
                if detail_level >= 3:
                    details["reasoning"] = contribution.get("reasoning")
                steps.append(TraceStep(
                    id=f"step_agent_{index}",
                    type="agent_contribution",
                    description=f"{format_agent_type(agent_type)} provided input",
                    timestamp=timestamp,
                    timestamp_estimated=estimated,
                    details=details,
                ))

            resolutions = collaboration.get("resolutions") or []
            for index, conflict in enumerate(collaboration.get("conflicts") or []):
                resolution = resolutions[index] if index < len(resolutions) else None
                timestamp, estimated = stamp(
                    (resolution or {}).get("timestamp") or conflict.get("timestamp"),
                    2 + len(contributions) + index,
                )
                if resolution is None:
                    details = {"resolution": "Conflict identified"}
                elif detail_level >= 3:
                    details = {"resolution": resolution.get("resolution"), "reasoning": resolution.get("reasoning")}
                else:
                    details = {"resolution": resolution.get("resolution")}
                steps.append(TraceStep(
                    id=f"step_conflict_{index}",
                    type="conflict_resolution",
                    description=f"Resolved conflict: {conflict.get('description')}",
                    timestamp=timestamp,
                    timestamp_estimated=estimated,
                    details=details,
                ))

        final_time = decision.get("timestamp") or (collaboration or {}).get("end_time")
        timestamp, estimated = stamp(final_time, len(steps))
        final_details = {"confidence": decision.get("confidence")}
        if detail_level >= 2:
            final_details["reasoning"] = decision.get("reasoning")
        steps.append(TraceStep(
            id="step_decision",
            type="final_decision",
            description=f"Selected action: {decision.get('action')}",
            timestamp=timestamp,
            timestamp_estimated=estimated,
            details=final_details,
        ))

        return steps
