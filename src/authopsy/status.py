"""
Status-Matrix Classifier for Authopsy.

Maps the (admin, user, anonymous) status triple to at most one finding.
The rules are kept as a table so the policy can be audited row by row.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from .models import Evidence, ResponseInfo, Severity, Vulnerability, VulnType

logger = logging.getLogger(__name__)

# Anonymous status used when the anonymous role was not requested
NOT_REQUESTED = 0

ANY: Optional[FrozenSet[int]] = None
OK = frozenset({200})
DENIED = frozenset({401, 403})
ABSENT = frozenset({NOT_REQUESTED})


@dataclass(frozen=True)
class StatusRule:
    """One row of the decision table. `None` in a column matches anything."""
    admin: Optional[FrozenSet[int]]
    user: Optional[FrozenSet[int]]
    anon: Optional[FrozenSet[int]]
    severity: Optional[Severity] = None
    vuln_type: Optional[VulnType] = None
    description: str = ""

    def matches(self, admin: int, user: int, anon: int) -> bool:
        return all(
            column is None or status in column
            for column, status in ((self.admin, admin), (self.user, user), (self.anon, anon))
        )

    @property
    def is_finding(self) -> bool:
        return self.severity is not None


# Evaluated top to bottom, first match wins.
STATUS_RULES: List[StatusRule] = [
    StatusRule(
        OK, OK, DENIED,
        Severity.CRITICAL, VulnType.VERTICAL_PRIVILEGE_ESCALATION,
        "User can access Admin-only resource with 200 OK",
    ),
    StatusRule(
        OK, OK, OK,
        Severity.HIGH, VulnType.MISSING_AUTHENTICATION,
        "Endpoint accessible without any authentication",
    ),
    StatusRule(
        DENIED, OK, ANY,
        Severity.CRITICAL, VulnType.ROLE_CONFUSION,
        "Lower privilege role has MORE access than higher privilege role",
    ),
    StatusRule(
        OK, DENIED, OK,
        Severity.CRITICAL, VulnType.MISSING_AUTHENTICATION,
        "Anonymous user can access while authenticated User cannot",
    ),
    # Cannot assess without an anonymous baseline
    StatusRule(OK, OK, ABSENT),
    # Correctly enforced
    StatusRule(OK, DENIED, DENIED | ABSENT),
]


class StatusAnalyzer:
    """Classifies status triples against STATUS_RULES."""

    rules: List[StatusRule] = STATUS_RULES

    @classmethod
    def classify(cls, admin: int, user: int, anon: int = NOT_REQUESTED) -> Optional[Vulnerability]:
        """Return the finding for a status triple, if any."""
        for rule in cls.rules:
            if rule.matches(admin, user, anon):
                if not rule.is_finding:
                    return None
                return Vulnerability(
                    severity=rule.severity,
                    vuln_type=rule.vuln_type,
                    description=rule.description,
                    evidence=Evidence.status_matrix(admin, user, anon),
                )
        return None

    @classmethod
    def analyze(
        cls,
        admin: ResponseInfo,
        user: ResponseInfo,
        anon: Optional[ResponseInfo] = None,
    ) -> List[Vulnerability]:
        anon_status = anon.status if anon is not None else NOT_REQUESTED
        finding = cls.classify(admin.status, user.status, anon_status)
        if finding:
            logger.debug(
                f"Status matrix ({admin.status}, {user.status}, {anon_status}) -> "
                f"{finding.vuln_type.value}"
            )
            return [finding]
        return []

    @staticmethod
    def both_success(admin: ResponseInfo, user: ResponseInfo) -> bool:
        return admin.is_success() and user.is_success()
