"""
Tests for report generation.
"""

import io
import json
from unittest.mock import patch

import pytest
from pydantic_core import PydanticSerializationError
from rich.console import Console

from authopsy.models import (
    Endpoint,
    Evidence,
    FuzzResult,
    FuzzType,
    HttpMethod,
    ResponseInfo,
    Role,
    ScanResult,
    Severity,
    Vulnerability,
    VulnType,
)
from authopsy.reporter import (
    WARNING_MARK,
    AccessControlMatrix,
    HtmlExporter,
    JsonExporter,
    ReportError,
    ReportGenerator,
)


def _vuln(severity: Severity, vuln_type: VulnType, description: str = "finding") -> Vulnerability:
    return Vulnerability(
        severity=severity,
        vuln_type=vuln_type,
        description=description,
        evidence=Evidence.status_matrix(200, 200, 200),
    )


@pytest.fixture
def results():
    return [
        ScanResult(
            endpoint=Endpoint(path="/api/users/{id}"),
            responses={
                Role.ADMIN: ResponseInfo(status=200, size=30, body={"id": 1, "email": "a@b.c"}, duration_ms=12),
                Role.USER: ResponseInfo(status=200, size=30, body={"id": 1, "email": "a@b.c"}),
                Role.ANONYMOUS: ResponseInfo(status=200, size=30),
            },
            vulnerabilities=[_vuln(Severity.HIGH, VulnType.MISSING_AUTHENTICATION)],
            duration_ms=40,
        ),
        ScanResult(
            endpoint=Endpoint(path="/api/orders", method=HttpMethod.POST, request_body_example={"sku": 1}),
            responses={
                Role.ADMIN: ResponseInfo(status=201),
                Role.USER: ResponseInfo(status=403),
                Role.ANONYMOUS: ResponseInfo.from_error("timed out", 10000),
            },
        ),
        ScanResult(
            endpoint=Endpoint(path="/api/admin"),
            responses={
                Role.ADMIN: ResponseInfo(status=403),
                Role.USER: ResponseInfo(status=200),
            },
            vulnerabilities=[_vuln(Severity.CRITICAL, VulnType.ROLE_CONFUSION, "<script>x</script>")],
        ),
    ]


def _console():
    return Console(file=io.StringIO(), width=200, color_system=None)


class TestAccessControlMatrix:
    """Tests for matrix rows."""

    def test_status_cells(self, results):
        matrix = AccessControlMatrix.from_results(results)

        first, second, third = matrix.entries
        assert first.admin_status == "200"
        assert first.user_status == f"200 {WARNING_MARK}"
        assert first.anon_status == f"200 {WARNING_MARK}"
        assert second.anon_status == "ERR"
        assert second.user_status == "403"
        assert third.anon_status == "-"
        assert third.user_status == f"200 {WARNING_MARK}"

    def test_anon_marker_only_for_high(self, results):
        """Test that a successful anon response is marked only for High findings."""
        results[0] = results[0].with_vulnerabilities([_vuln(Severity.CRITICAL, VulnType.BROKEN_ACCESS_CONTROL)])

        entry = AccessControlMatrix.from_results(results).entries[0]

        assert entry.anon_status == "200"
        assert entry.severity == Severity.CRITICAL

    def test_clean_endpoint(self, results):
        entry = AccessControlMatrix.from_results(results).entries[1]

        assert entry.is_vulnerable is False
        assert entry.severity is None


class TestJsonExporter:
    """Tests for JSON export and reload."""

    def test_round_trip(self, results, tmp_path):
        path = tmp_path / "scan.json"

        JsonExporter.export(results, str(path))
        loaded = JsonExporter.load(str(path))

        assert loaded == results

    def test_document_shape(self, results):
        data = json.loads(JsonExporter.to_json(results))

        assert set(data) == {"scan_time", "results", "summary"}
        assert data["summary"]["total_endpoints"] == 3
        assert data["summary"]["critical_count"] == 1
        assert data["summary"]["ok_count"] == 1
        assert "Admin" in data["results"][0]["responses"]

    def test_load_missing(self, tmp_path):
        with pytest.raises(ReportError):
            JsonExporter.load(str(tmp_path / "missing.json"))

    def test_load_malformed(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"results": "nope"}')

        with pytest.raises(ReportError, match="Invalid scan export"):
            JsonExporter.load(str(path))

    def test_deeply_nested_body_exports(self, tmp_path):
        body = 1
        for _ in range(400):
            body = {"a": body}
        deep = [
            ScanResult(
                endpoint=Endpoint(path="/api/deep"),
                responses={Role.ADMIN: ResponseInfo(status=200, size=2000, body=body)},
            )
        ]
        path = tmp_path / "deep.json"

        JsonExporter.export(deep, str(path))
        loaded = JsonExporter.load(str(path))

        assert loaded[0].get_response(Role.ADMIN).status == 200
        assert loaded[0].get_response(Role.ADMIN).body is None

    def test_serialization_failure_raises_report_error(self, results, tmp_path):
        path = tmp_path / "scan.json"

        with patch.object(
            JsonExporter, "to_json", side_effect=PydanticSerializationError("depth exceeded")
        ):
            with pytest.raises(ReportError, match="Cannot serialize"):
                JsonExporter.export(results, str(path))

        assert not path.exists()


class TestHtmlExporter:
    """Tests for the HTML report."""

    def test_render_escapes_values(self, results):
        page = HtmlExporter.render(results)

        assert "&lt;script&gt;x&lt;/script&gt;" in page
        assert "<script>" not in page

    def test_render_rows_and_classes(self, results):
        page = HtmlExporter.render(results)

        assert page.startswith("<!DOCTYPE html>")
        assert '<span class="severity critical">CRITICAL</span>' in page
        assert '<span class="severity ok">OK</span>' in page
        assert "<td>ERR</td>" in page
        assert "Missing Authentication" in page

    def test_export(self, results, tmp_path):
        path = tmp_path / "report.html"

        HtmlExporter.export(results, str(path))

        assert "Authopsy Scan Report" in path.read_text()

    def test_export_unwritable(self, results, tmp_path):
        with pytest.raises(ReportError):
            HtmlExporter.export(results, str(tmp_path / "missing" / "report.html"))


class TestReportGenerator:
    """Tests for terminal output."""

    def test_terminal_report(self, results):
        console = _console()

        ReportGenerator(console).generate_terminal(results)
        output = console.file.getvalue()

        assert "Access Control Matrix" in output
        assert "/api/users/{id}" in output
        assert "Role Confusion" in output
        assert "<script>x</script>" in output
        assert VulnType.ROLE_CONFUSION.recommendation in output

    def test_no_findings(self):
        console = _console()

        ReportGenerator(console).print_details([ScanResult(endpoint=Endpoint(path="/ok"))])

        assert "No access control issues found" in console.file.getvalue()

    def test_fuzz_results(self):
        console = _console()
        fuzz = [
            FuzzResult(
                endpoint="GET    /api/admin",
                fuzz_type=FuzzType.QUERY_PARAM,
                trigger="admin=true",
                baseline_status=403,
                fuzzed_status=200,
                baseline_size=20,
                fuzzed_size=500,
                vulnerability=_vuln(Severity.CRITICAL, VulnType.BROKEN_ACCESS_CONTROL),
            ),
            FuzzResult(
                endpoint="GET    /api/admin",
                fuzz_type=FuzzType.HEADER,
                trigger="X-Admin: true",
                baseline_status=403,
                fuzzed_status=403,
                baseline_size=20,
                fuzzed_size=20,
            ),
        ]

        ReportGenerator(console).print_fuzz_results(fuzz)
        output = console.file.getvalue()

        assert "admin=true" in output
        assert "X-Admin" not in output
        assert "Total bypasses found: 1" in output

    def test_fuzz_no_results(self):
        console = _console()

        ReportGenerator(console).print_fuzz_results([])

        assert "No bypass vulnerabilities found" in console.file.getvalue()
