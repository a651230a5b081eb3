# decision_engine/services/safety/checks.py
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class CheckResult:
    """نتيجة فحص محتوى أو فحص أخلاقي"""
    approved: bool
    flagged_terms: List[str] = field(default_factory=list)
    reason: Optional[str] = None


class ContentModerator(ABC):
    @abstractmethod
    async def moderate(self, content: str) -> CheckResult:
        pass


class EthicsChecker(ABC):
    @abstractmethod
    async def check(self, context: Dict[str, Any]) -> CheckResult:
        pass


PROBLEMATIC_TERMS = (
    "illegal", "fraud", "scam", "hack", "crack", "steal",
    "porn", "gambling", "betting", "drugs", "weapon", "violence",
)

ETHICAL_CONCERNS = (
    "manipulation", "deception", "exploitation", "discrimination",
    "privacy violation", "harassment", "unfair", "misleading",
)

VULNERABLE_GROUPS = ("children", "elderly", "disabled", "disadvantaged")


def find_terms(text: str, terms: Sequence[str]) -> List[str]:
    """المصطلحات الموجودة في النص (بدون حساسية لحالة الأحرف)"""
    lowered = text.lower()
    return [term for term in terms if term.lower() in lowered]


class KeywordContentModerator(ContentModerator):
    """فحص المحتوى بقائمة كلمات"""

    def __init__(self, terms: Sequence[str] = PROBLEMATIC_TERMS):
        self.terms = tuple(terms)

    async def moderate(self, content: str) -> CheckResult:
        flagged = find_terms(content or "", self.terms)
        if flagged:
            return CheckResult(False, flagged, f"Content contains problematic terms: {', '.join(flagged)}")
        return CheckResult(True)


class KeywordEthicsChecker(EthicsChecker):
    """فحص أخلاقي على الوصف والجمهور المستهدف"""

    def __init__(
        self,
        concerns: Sequence[str] = ETHICAL_CONCERNS,
        vulnerable_groups: Sequence[str] = VULNERABLE_GROUPS,
    ):
        self.concerns = tuple(concerns)
        self.vulnerable_groups = tuple(vulnerable_groups)

    async def check(self, context: Dict[str, Any]) -> CheckResult:
        flagged = find_terms(str(context.get("description") or ""), self.concerns)
        if flagged:
            return CheckResult(False, flagged, f"Operation raises ethical concerns: {', '.join(flagged)}")

        audience = context.get("target_audience")
        if isinstance(audience, (list, tuple)):
            audience = " ".join(str(a) for a in audience)
        targeted = find_terms(str(audience or ""), self.vulnerable_groups)
        if targeted:
            return CheckResult(False, targeted, f"Operation targets vulnerable groups: {', '.join(targeted)}")

        return CheckResult(True)
