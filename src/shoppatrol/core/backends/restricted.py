"""
Keyword screen for prohibited merchandise categories.

Product names that mention a restricted category are escalated to CRITICAL
whatever the classifier said, including when classification failed.
"""

from __future__ import annotations

from typing import Iterable

from shoppatrol.core.records import RiskAssessment, RiskLevel

RESTRICTED_PREFIX = "[Restricted]"


class RestrictedCategoryScreen:
    """Substring match of product names against restricted keywords."""

    def __init__(self, keywords: Iterable[str] = ()) -> None:
        self.keywords = [k for k in keywords if k]

    def match(self, product_name: str | None) -> str | None:
        """Return the first restricted keyword found in the name."""
        if not product_name:
            return None
        for keyword in self.keywords:
            if keyword in product_name:
                return keyword
        return None

    def apply(self, product_name: str | None, assessment: RiskAssessment) -> RiskAssessment:
        """Escalate an assessment when the product name hits a keyword."""
        keyword = self.match(product_name)
        if keyword is None:
            return assessment

        if assessment.risk_level == RiskLevel.ERROR:
            detail = "(Error)"
        else:
            detail = f"(AI: {assessment.reason})"

        return RiskAssessment.judged(
            RiskLevel.CRITICAL,
            is_critical=True,
            reason=f'{RESTRICTED_PREFIX} "{keyword}" {detail}',
            raw_backend_label=assessment.raw_backend_label,
        )
