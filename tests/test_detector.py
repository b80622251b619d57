"""
Tests for the Differential Detector.
"""

import pytest

from authopsy.detector import VulnerabilityDetector
from authopsy.models import (
    Endpoint,
    Evidence,
    EvidenceType,
    ResponseInfo,
    Role,
    ScanResult,
    Severity,
    Vulnerability,
    VulnType,
)


def _result(admin=None, user=None, anon=None) -> ScanResult:
    responses = {}
    for role, response in ((Role.ADMIN, admin), (Role.USER, user), (Role.ANONYMOUS, anon)):
        if response is not None:
            responses[role] = response
    return ScanResult(endpoint=Endpoint(path="/api/users/{id}"), responses=responses)


def _vuln(vuln_type: VulnType, severity: Severity, description: str = "x") -> Vulnerability:
    return Vulnerability(
        severity=severity,
        vuln_type=vuln_type,
        description=description,
        evidence=Evidence(evidence_type=EvidenceType.STATUS_MATRIX, details=description),
    )


def _types(vulns):
    return [(v.vuln_type, v.severity) for v in vulns]


class TestAnalyze:
    """Tests for the full per-endpoint analysis."""

    @pytest.fixture
    def detector(self):
        return VulnerabilityDetector()

    def test_identical_structure_without_anon(self, detector):
        """Test ten identical keys with anonymous not requested."""
        body = {f"field{i}": i for i in range(10)}
        result = _result(
            admin=ResponseInfo(status=200, size=120, body=body),
            user=ResponseInfo(status=200, size=120, body=body),
        )

        vulns = detector.analyze(result, is_public=False)

        assert (VulnType.BROKEN_ACCESS_CONTROL, Severity.CRITICAL) in _types(vulns)
        assert all(v.evidence.evidence_type != EvidenceType.STATUS_MATRIX for v in vulns)
        assert vulns[0].severity == Severity.CRITICAL

    def test_status_and_structure_combined(self, detector):
        body = {"a": 1, "b": 2, "c": 3, "d": 4}
        result = _result(
            admin=ResponseInfo(status=200, body=body),
            user=ResponseInfo(status=200, body=body),
            anon=ResponseInfo(status=401),
        )

        vulns = detector.analyze(result)

        assert _types(vulns) == [
            (VulnType.VERTICAL_PRIVILEGE_ESCALATION, Severity.CRITICAL),
            (VulnType.BROKEN_ACCESS_CONTROL, Severity.CRITICAL),
        ]

    def test_properly_enforced(self, detector):
        result = _result(
            admin=ResponseInfo(status=200, size=500, body={"a": 1}),
            user=ResponseInfo(status=403, size=20),
            anon=ResponseInfo(status=401, size=20),
        )

        assert detector.analyze(result) == []

    def test_public_endpoint_gets_no_analysis(self, detector):
        """Test that public endpoints are exempt from every check."""
        body = {"a": 1, "b": 2, "c": 3, "password": "x"}
        result = _result(
            admin=ResponseInfo(status=200, size=200, body=body),
            user=ResponseInfo(status=200, size=200, body=body),
            anon=ResponseInfo(status=200, size=200, body=body),
        )

        assert detector.analyze(result, is_public=True) == []
        assert detector.analyze(result, is_public=False) != []

    @pytest.mark.parametrize("failed", [Role.ADMIN, Role.USER])
    def test_transport_error_short_circuits(self, detector, failed):
        ok = ResponseInfo(status=200, size=500, body={"a": 1, "b": 2, "c": 3, "d": 4})
        responses = {Role.ADMIN: ok, Role.USER: ok, Role.ANONYMOUS: ResponseInfo(status=200)}
        responses[failed] = ResponseInfo.from_error("connection refused")

        result = ScanResult(endpoint=Endpoint(path="/x"), responses=responses)

        assert detector.analyze(result) == []

    def test_missing_user_response(self, detector):
        result = _result(admin=ResponseInfo(status=200))
        assert detector.analyze(result) == []

    def test_anon_error_treated_as_not_requested(self, detector):
        result = _result(
            admin=ResponseInfo(status=200),
            user=ResponseInfo(status=200),
            anon=ResponseInfo.from_error("timed out"),
        )

        assert detector.analyze(result) == []

    def test_heuristics_need_both_success(self, detector):
        """Test that only the status table runs when admin is denied."""
        body = {"a": 1, "b": 2, "c": 3, "d": 4}
        result = _result(
            admin=ResponseInfo(status=403, size=200, body=body),
            user=ResponseInfo(status=200, size=200, body=body),
        )

        vulns = detector.analyze(result)

        assert _types(vulns) == [(VulnType.ROLE_CONFUSION, Severity.CRITICAL)]


class TestContentLength:
    """Tests for the content-length heuristic."""

    @pytest.fixture
    def detector(self):
        return VulnerabilityDetector(length_threshold=0.05)

    def test_nearly_identical_sizes(self, detector):
        vulns = detector.analyze_content_length(1000, 980)

        assert len(vulns) == 1
        assert vulns[0].severity == Severity.HIGH
        assert vulns[0].vuln_type == VulnType.BROKEN_ACCESS_CONTROL
        assert vulns[0].evidence.data["ratio"] == pytest.approx(0.02)

    def test_different_sizes(self, detector):
        assert detector.analyze_content_length(1000, 500) == []

    def test_small_admin_response(self, detector):
        """Test that tiny responses are never compared by size."""
        assert detector.analyze_content_length(50, 50) == []
        assert len(detector.analyze_content_length(51, 51)) == 1


class TestJsonStructure:
    """Tests for the structural heuristics."""

    @pytest.fixture
    def detector(self):
        return VulnerabilityDetector()

    def test_identical_keys_over_threshold(self, detector):
        body = {"a": 1, "b": 2, "c": 3, "d": 4}
        vulns = detector.analyze_json_structure(
            ResponseInfo(status=200, body=body),
            ResponseInfo(status=200, body=body),
        )

        assert _types(vulns) == [(VulnType.BROKEN_ACCESS_CONTROL, Severity.CRITICAL)]

    def test_identical_keys_at_threshold(self, detector):
        body = {"a": 1, "b": 2, "c": 3}
        vulns = detector.analyze_json_structure(
            ResponseInfo(status=200, body=body),
            ResponseInfo(status=200, body=body),
        )

        assert vulns == []

    def test_extra_and_sensitive_user_keys(self, detector):
        """Test that extra user keys and sensitive names are both reported."""
        vulns = detector.analyze_json_structure(
            ResponseInfo(status=200, body={"a": 1, "b": 2, "c": 3, "d": 4}),
            ResponseInfo(status=200, body={"a": 1, "secret_token": "x"}),
        )

        assert _types(vulns) == [
            (VulnType.DATA_LEAKAGE, Severity.CRITICAL),
            (VulnType.SENSITIVE_DATA_EXPOSURE, Severity.MEDIUM),
        ]
        assert vulns[0].evidence.data["keys"] == ["secret_token"]
        assert vulns[1].evidence.data["fields"] == ["secret_token"]

    def test_pagination_bypass(self, detector):
        vulns = detector.analyze_json_structure(
            ResponseInfo(status=200, body={"items": [1, 2]}),
            ResponseInfo(status=200, body={"items": [1, 2, 3]}),
        )

        assert _types(vulns) == [(VulnType.PAGINATION_BYPASS, Severity.HIGH)]
        assert vulns[0].evidence.data == {"path": "items", "admin": 2, "user": 3}

    def test_pagination_one_finding_per_path(self, detector):
        admin = {"a": [1], "b": [1]}
        user = {"a": [1, 2], "b": [1, 2]}

        vulns = detector.analyze_json_structure(
            ResponseInfo(status=200, body=admin),
            ResponseInfo(status=200, body=user),
        )

        paths = [v.evidence.data["path"] for v in vulns if v.vuln_type == VulnType.PAGINATION_BYPASS]
        assert paths == ["a", "b"]

    def test_non_json_body_skipped(self, detector):
        vulns = detector.analyze_json_structure(
            ResponseInfo(status=200, size=10),
            ResponseInfo(status=200, body={"password": "x"}),
        )

        assert vulns == []

    def test_ignored_fields_removed(self):
        detector = VulnerabilityDetector(ignore_fields=["token"])

        vulns = detector.analyze_json_structure(
            ResponseInfo(status=200, body={"a": 1}),
            ResponseInfo(status=200, body={"a": 1, "token": "x"}),
        )

        assert vulns == []

    def test_sensitive_patterns_case_insensitive(self, detector):
        fields = detector.find_sensitive_fields(
            {"Password", "user.API_KEY", "creditCard", "name", "account-number"}
        )

        assert fields == ["Password", "account-number", "creditCard", "user.API_KEY"]


class TestTiming:
    """Tests for the timing heuristic."""

    @pytest.fixture
    def detector(self):
        return VulnerabilityDetector()

    def test_large_variance(self, detector):
        vulns = detector.analyze_timing(150, 700)

        assert _types(vulns) == [(VulnType.TIMING_ATTACK, Severity.LOW)]

    def test_fast_response_ignored(self, detector):
        assert detector.analyze_timing(50, 700) == []

    def test_small_variance(self, detector):
        assert detector.analyze_timing(200, 700) == []


class TestConsolidation:
    """Tests for deduplication and ranking."""

    def test_dedup_by_type_and_severity(self):
        first = _vuln(VulnType.DATA_LEAKAGE, Severity.HIGH, "first")
        vulns = [
            first,
            _vuln(VulnType.DATA_LEAKAGE, Severity.HIGH, "second"),
            _vuln(VulnType.BROKEN_ACCESS_CONTROL, Severity.CRITICAL),
        ]

        result = VulnerabilityDetector.consolidate_findings(vulns)

        assert len(result) == 2
        assert result[0].severity == Severity.CRITICAL
        assert result[1].description == "first"

    def test_same_type_different_severity_kept(self):
        vulns = [
            _vuln(VulnType.BROKEN_ACCESS_CONTROL, Severity.HIGH),
            _vuln(VulnType.BROKEN_ACCESS_CONTROL, Severity.CRITICAL),
        ]

        result = VulnerabilityDetector.consolidate_findings(vulns)

        assert [v.severity for v in result] == [Severity.CRITICAL, Severity.HIGH]

    def test_ties_keep_discovery_order(self):
        vulns = [
            _vuln(VulnType.TIMING_ATTACK, Severity.LOW),
            _vuln(VulnType.PAGINATION_BYPASS, Severity.HIGH),
            _vuln(VulnType.DATA_LEAKAGE, Severity.HIGH),
        ]

        result = VulnerabilityDetector.consolidate_findings(vulns)

        assert _types(result) == [
            (VulnType.PAGINATION_BYPASS, Severity.HIGH),
            (VulnType.DATA_LEAKAGE, Severity.HIGH),
            (VulnType.TIMING_ATTACK, Severity.LOW),
        ]
