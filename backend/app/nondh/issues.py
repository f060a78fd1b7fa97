"""Structured validation results for the chain engine.

Nothing in the engine raises for a business-rule violation.  Each
violation becomes an :class:`Issue`, and every mutation hands back a
:class:`MutationResult` that either carries the new snapshot or, when a
blocking issue was found, the caller's original snapshot untouched.

Issue dicts share the shape of the rest of the check results
(``rule_code`` / ``severity`` / ``status`` / ``explanation`` / ``evidence``)
so the presentation layer can render both with one component.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from app.nondh.area import Area
from app.nondh.models import ParcelSnapshot

# Rule codes
FORMAT_ERROR = "FORMAT_ERROR"
ORDERING_VIOLATION = "ORDERING_VIOLATION"
AREA_OVERFLOW = "AREA_OVERFLOW"
MISSING_REASON = "MISSING_REASON"
DANGLING_REFERENCE = "DANGLING_REFERENCE"

_RULE_NAMES = {
    FORMAT_ERROR: "Amendment Number Format",
    ORDERING_VIOLATION: "Chain Ordering",
    AREA_OVERFLOW: "Area Overflow",
    MISSING_REASON: "Missing Invalidation Reason",
    DANGLING_REFERENCE: "Dangling Reference",
}


@dataclass(frozen=True)
class Issue:
    """One validation finding.  ``status`` is FAIL (blocking) or WARNING."""
    rule_code: str
    explanation: str
    severity: str = "HIGH"
    status: str = "FAIL"
    evidence: str = ""
    amendment_id: Optional[str] = None
    max_permissible: Optional[Area] = None

    @property
    def blocking(self) -> bool:
        return self.status == "FAIL"

    def to_dict(self) -> dict:
        d = {
            "rule_code": self.rule_code,
            "rule_name": _RULE_NAMES.get(self.rule_code, self.rule_code),
            "severity": self.severity,
            "status": self.status,
            "explanation": self.explanation,
            "evidence": self.evidence,
            "source": "chain_engine",
        }
        if self.amendment_id is not None:
            d["amendment_id"] = self.amendment_id
        if self.max_permissible is not None:
            d["max_permissible"] = self.max_permissible.to_dict()
        return d


def make_issue(rule_code: str, explanation: str, *, evidence: str = "",
               amendment_id: str | None = None, severity: str = "HIGH",
               warning: bool = False, max_permissible: Area | None = None) -> Issue:
    """Create a standardized Issue."""
    return Issue(
        rule_code=rule_code,
        explanation=explanation,
        severity="MEDIUM" if warning and severity == "HIGH" else severity,
        status="WARNING" if warning else "FAIL",
        evidence=evidence,
        amendment_id=amendment_id,
        max_permissible=max_permissible,
    )


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one engine mutation.

    ``snapshot`` is the recomputed snapshot on success and the caller's
    prior snapshot (same object) when ``ok`` is False.
    """
    snapshot: ParcelSnapshot
    issues: tuple[Issue, ...] = ()
    warnings: tuple[Issue, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not any(i.blocking for i in self.issues)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def rejected(prior: ParcelSnapshot, *issues: Issue) -> MutationResult:
    """Build a failed result that keeps the prior snapshot unchanged."""
    return MutationResult(snapshot=prior, issues=tuple(issues))
