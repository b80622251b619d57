"""
Differential Detector for Authopsy.

Turns the admin/user/anonymous responses of one endpoint into a ranked,
deduplicated list of access-control findings.
"""

import logging
import re
from typing import Iterable, List, Optional, Set, Tuple

from .differ import JsonDiffer
from .models import (
    Evidence,
    ResponseInfo,
    Role,
    ScanResult,
    Severity,
    Vulnerability,
    VulnType,
)
from .status import StatusAnalyzer

logger = logging.getLogger(__name__)


# Field names that should never reach a lower-privileged caller
SENSITIVE_PATTERNS: List[re.Pattern] = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"password",
        r"secret",
        r"token",
        r"api[_-]?key",
        r"private",
        r"internal",
        r"admin",
        r"ssn",
        r"credit[_-]?card",
        r"cvv",
        r"routing[_-]?number",
        r"account[_-]?number",
    )
]

# Admin responses at or below this size are too small to compare by length
MIN_COMPARABLE_SIZE = 50
# Key sets this small match by coincidence too often
MIN_MATCHING_KEYS = 3
TIMING_FLOOR_MS = 100
TIMING_DELTA_MS = 500


class VulnerabilityDetector:
    """
    Differential access-control analysis for a single endpoint.

    Checks, in order:
    - Status matrix (skipped for public endpoints)
    - Content-length similarity
    - JSON structure: identical key sets, extra keys, sensitive field
      names, longer arrays for the lower role
    - Response timing variance
    """

    def __init__(
        self,
        length_threshold: float = 0.05,
        ignore_fields: Optional[Iterable[str]] = None,
    ):
        self.length_threshold = length_threshold
        self.differ = JsonDiffer(ignore_fields)
        self.sensitive_patterns = SENSITIVE_PATTERNS

    def analyze(self, result: ScanResult, is_public: bool = False) -> List[Vulnerability]:
        """
        Analyze one endpoint's role responses.

        Args:
            result: ScanResult holding the responses per role
            is_public: Whether the endpoint is expected to be broadly accessible

        Returns:
            Findings ordered by descending severity, one per (type, severity)
        """
        admin = result.get_response(Role.ADMIN)
        user = result.get_response(Role.USER)

        if admin is None or admin.is_error() or user is None or user.is_error():
            logger.debug(f"Skipping analysis of {result.endpoint.key}: missing admin/user response")
            return []

        anon = result.get_response(Role.ANONYMOUS)
        if anon is not None and anon.is_error():
            anon = None

        vulns: List[Vulnerability] = []

        # Public endpoints receive no analysis at all
        if is_public:
            return vulns

        vulns.extend(StatusAnalyzer.analyze(admin, user, anon))

        if StatusAnalyzer.both_success(admin, user):
            vulns.extend(self.analyze_content_length(admin.size, user.size))
            vulns.extend(self.analyze_json_structure(admin, user))
            vulns.extend(self.analyze_timing(admin.duration_ms, user.duration_ms))

        return self.consolidate_findings(vulns)

    def analyze_content_length(self, admin_len: int, user_len: int) -> List[Vulnerability]:
        ratio = self.differ.length_diff_ratio(admin_len, user_len)

        if ratio < self.length_threshold and admin_len > MIN_COMPARABLE_SIZE:
            return [Vulnerability(
                severity=Severity.HIGH,
                vuln_type=VulnType.BROKEN_ACCESS_CONTROL,
                description="Response sizes nearly identical - likely same data returned",
                evidence=Evidence.length_comparison(admin_len, user_len, ratio),
            )]
        return []

    def analyze_json_structure(
        self,
        admin: ResponseInfo,
        user: ResponseInfo,
    ) -> List[Vulnerability]:
        findings: List[Vulnerability] = []

        if admin.body is None or user.body is None:
            return findings

        admin_keys = self.differ.extract_keys(admin.body)
        user_keys = self.differ.extract_keys(user.body)

        if not admin_keys or not user_keys:
            return findings

        if self.differ.keys_match(admin_keys, user_keys) and len(admin_keys) > MIN_MATCHING_KEYS:
            findings.append(Vulnerability(
                severity=Severity.CRITICAL,
                vuln_type=VulnType.BROKEN_ACCESS_CONTROL,
                description="Identical JSON structure - User sees all Admin data",
                evidence=Evidence.key_comparison(list(admin_keys), list(user_keys)),
            ))

        user_extra = self.differ.extra_keys(admin_keys, user_keys)
        if user_extra:
            findings.append(Vulnerability(
                severity=Severity.CRITICAL,
                vuln_type=VulnType.DATA_LEAKAGE,
                description="User response contains keys NOT in Admin response",
                evidence=Evidence.extra_keys(list(user_extra)),
            ))

        user_sensitive = self.find_sensitive_fields(user_keys)
        if user_sensitive:
            findings.append(Vulnerability(
                severity=Severity.MEDIUM,
                vuln_type=VulnType.SENSITIVE_DATA_EXPOSURE,
                description="Sensitive field names visible in User response",
                evidence=Evidence.sensitive_fields(user_sensitive),
            ))

        admin_arrays = self.differ.extract_array_lengths(admin.body)
        user_arrays = self.differ.extract_array_lengths(user.body)

        for path in sorted(admin_arrays):
            admin_len = admin_arrays[path]
            user_len = user_arrays.get(path)
            if user_len is not None and user_len > admin_len:
                findings.append(Vulnerability(
                    severity=Severity.HIGH,
                    vuln_type=VulnType.PAGINATION_BYPASS,
                    description=f"User sees {user_len} items vs Admin's {admin_len} at {path}",
                    evidence=Evidence.array_lengths(path, admin_len, user_len),
                ))

        return findings

    def analyze_timing(self, admin_ms: int, user_ms: int) -> List[Vulnerability]:
        if (
            abs(admin_ms - user_ms) > TIMING_DELTA_MS
            and admin_ms > TIMING_FLOOR_MS
            and user_ms > TIMING_FLOOR_MS
        ):
            return [Vulnerability(
                severity=Severity.LOW,
                vuln_type=VulnType.TIMING_ATTACK,
                description="Significant response time variance detected between roles",
                evidence=Evidence.timing_difference(admin_ms, user_ms),
            )]
        return []

    def find_sensitive_fields(self, keys: Set[str]) -> List[str]:
        return sorted(
            key for key in keys
            if any(pattern.search(key) for pattern in self.sensitive_patterns)
        )

    @staticmethod
    def consolidate_findings(vulns: List[Vulnerability]) -> List[Vulnerability]:
        """Keep the first finding per (type, severity), highest severity first."""
        seen: Set[Tuple[VulnType, Severity]] = set()
        consolidated: List[Vulnerability] = []

        for vuln in vulns:
            key = (vuln.vuln_type, vuln.severity)
            if key not in seen:
                seen.add(key)
                consolidated.append(vuln)

        # sorted() is stable, so discovery order survives within a severity
        return sorted(consolidated, key=lambda v: v.severity.rank, reverse=True)
