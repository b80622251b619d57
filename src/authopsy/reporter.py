"""
Report Generator for Authopsy.

Renders scan and fuzz results:
- Terminal (Rich access-control matrix, summary and findings)
- JSON (export and reload of ScanResults)
- HTML (standalone report)
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich import box

from .models import FuzzResult, Role, ScanResult, ScanSummary, Severity

logger = logging.getLogger(__name__)

WARNING_MARK = "⚠"

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold white on red",
    Severity.HIGH: "bold red",
    Severity.MEDIUM: "bold yellow",
    Severity.LOW: "blue",
    Severity.INFO: "cyan",
}


class ReportError(Exception):
    """Error reading or writing a report."""
    pass


# --- Access control matrix ---

@dataclass
class MatrixEntry:
    """One endpoint row of the access-control matrix."""
    endpoint: str
    admin_status: str
    user_status: str
    anon_status: str
    severity: Optional[Severity]
    is_vulnerable: bool


class AccessControlMatrix:
    """Status codes per role for every scanned endpoint."""

    def __init__(self, entries: List[MatrixEntry]):
        self.entries = entries

    @classmethod
    def from_results(cls, results: List[ScanResult]) -> "AccessControlMatrix":
        entries = []
        for r in results:
            vulnerable = r.is_vulnerable()
            severity = r.max_severity()

            admin = r.get_response(Role.ADMIN)
            user = r.get_response(Role.USER)
            anon = r.get_response(Role.ANONYMOUS)

            user_status = cls.format_status(user)
            if user and vulnerable and user.is_success():
                user_status = f"{user_status} {WARNING_MARK}"

            anon_status = cls.format_status(anon)
            if anon and vulnerable and anon.is_success() and severity == Severity.HIGH:
                anon_status = f"{anon_status} {WARNING_MARK}"

            entries.append(MatrixEntry(
                endpoint=r.endpoint.display_path(),
                admin_status=cls.format_status(admin),
                user_status=user_status,
                anon_status=anon_status,
                severity=severity,
                is_vulnerable=vulnerable,
            ))
        return cls(entries)

    @staticmethod
    def format_status(response) -> str:
        if response is None:
            return "-"
        if response.is_error():
            return "ERR"
        return str(response.status)


# --- Terminal ---

class ReportGenerator:
    """Rich terminal output for scan and fuzz results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def generate_terminal(self, results: List[ScanResult], duration_ms: Optional[int] = None) -> None:
        self.print_matrix(results)
        self.print_summary(results, duration_ms)
        self.print_details(results)

    def print_matrix(self, results: List[ScanResult]) -> None:
        matrix = AccessControlMatrix.from_results(results)

        table = Table(
            title="Access Control Matrix",
            show_header=True,
            header_style="bold cyan",
            box=box.ROUNDED,
        )
        table.add_column("Endpoint", style="white")
        table.add_column("Admin", justify="center")
        table.add_column("User", justify="center")
        table.add_column("Anon", justify="center")
        table.add_column("Status", justify="center")

        for entry in matrix.entries:
            user = entry.user_status
            if entry.is_vulnerable and "200" in user:
                user = f"[yellow]{user}[/yellow]"
            table.add_row(
                escape(entry.endpoint),
                entry.admin_status,
                user,
                entry.anon_status,
                self._severity_label(entry.severity),
            )

        self.console.print()
        self.console.print(table)

    def print_summary(self, results: List[ScanResult], duration_ms: Optional[int] = None) -> None:
        if duration_ms is None:
            duration_ms = max((r.duration_ms for r in results), default=0)
        summary = ScanSummary.from_results(results, duration_ms)

        self.console.print()
        self.console.print("[bold underline]Summary[/bold underline]")
        self.console.print(
            f"{summary.total_endpoints} endpoints scanned in {summary.duration_ms / 1000:.2f}s"
        )

        counts = [
            (Severity.CRITICAL, summary.critical_count),
            (Severity.HIGH, summary.high_count),
            (Severity.MEDIUM, summary.medium_count),
            (Severity.LOW, summary.low_count),
            (Severity.INFO, summary.info_count),
        ]
        for severity, count in counts:
            if count > 0:
                self.console.print(f"  {self._severity_label(severity)}: {count}")
        self.console.print(f"  [green]OK[/green]: {summary.ok_count}")
        self.console.print()

    def print_details(self, results: List[ScanResult]) -> None:
        vulnerable = [r for r in results if r.is_vulnerable()]
        if not vulnerable:
            self.console.print(
                Panel(
                    "[bold green]No access control issues found![/bold green]",
                    border_style="green",
                )
            )
            return

        self.console.print("[bold underline]Findings[/bold underline]")

        for result in vulnerable:
            self.console.print()
            self.console.print(
                f"\\[{self._severity_label(result.max_severity())}] "
                f"[bold]{escape(result.endpoint.display_path())}[/bold]"
            )
            for vuln in result.vulnerabilities:
                self.console.print(
                    f"  → [yellow]{vuln.vuln_type.label}[/yellow]: {escape(vuln.description)}"
                )
                self.console.print(f"    [dim]{escape(vuln.evidence.details)}[/dim]")
                if vuln.vuln_type.recommendation:
                    self.console.print(f"    [cyan]Fix[/cyan]: {vuln.vuln_type.recommendation}")
        self.console.print()

    def print_fuzz_results(self, results: List[FuzzResult]) -> None:
        findings = [r for r in results if r.vulnerability is not None]

        if not findings:
            self.console.print()
            self.console.print("[green]No bypass vulnerabilities found via fuzzing.[/green]")
            return

        self.console.print()
        self.console.print("[bold red]Fuzzing Results - Bypass Vulnerabilities Found:[/bold red]")
        self.console.print("=" * 80)

        for result in findings:
            self.console.print()
            self.console.print(
                f"\\[{self._severity_label(result.vulnerability.severity)}] "
                f"[yellow]{escape(result.endpoint)}[/yellow] - {result.fuzz_type.value}"
            )
            self.console.print(f"  Trigger: [cyan]{escape(result.trigger)}[/cyan]")
            self.console.print(
                f"  Status: [red]{result.baseline_status}[/red] -> "
                f"[green]{result.fuzzed_status}[/green]"
            )
            self.console.print(f"  Size: {result.baseline_size} -> {result.fuzzed_size} bytes")

        self.console.print()
        self.console.print("=" * 80)
        self.console.print(f"Total bypasses found: [bold red]{len(findings)}[/bold red]")

    @staticmethod
    def _severity_label(severity: Optional[Severity]) -> str:
        if severity is None:
            return "[green]OK[/green]"
        style = SEVERITY_STYLES.get(severity, "white")
        return f"[{style}]{severity.value}[/{style}]"


# --- JSON ---

class ExportData(BaseModel):
    """On-disk format of a scan export."""
    scan_time: str
    results: List[ScanResult]
    summary: ScanSummary


class JsonExporter:
    """Writes and reloads scan results."""

    @staticmethod
    def to_json(results: List[ScanResult]) -> str:
        data = ExportData(
            scan_time=datetime.now(timezone.utc).isoformat(),
            results=results,
            summary=ScanSummary.from_results(results, 0),
        )
        return data.model_dump_json(indent=2)

    @classmethod
    def export(cls, results: List[ScanResult], path: str) -> None:
        try:
            content = cls.to_json(results)
        except PydanticSerializationError as e:
            raise ReportError(f"Cannot serialize scan results: {e}") from e

        try:
            Path(path).write_text(content)
        except OSError as e:
            raise ReportError(f"Failed to write to {path}: {e}") from e
        logger.info(f"Saved JSON report: {path}")

    @staticmethod
    def load(path: str) -> List[ScanResult]:
        try:
            content = Path(path).read_text()
        except OSError as e:
            raise ReportError(f"Failed to read {path}: {e}") from e

        try:
            return ExportData.model_validate_json(content).results
        except ValidationError as e:
            raise ReportError(f"Invalid scan export {path}: {e}") from e


# --- HTML ---

class HtmlExporter:
    """Standalone HTML report."""

    @staticmethod
    def severity_class(severity: Optional[Severity]) -> str:
        return severity.value.lower() if severity else "ok"

    @classmethod
    def render(cls, results: List[ScanResult]) -> str:
        summary = ScanSummary.from_results(results, 0)
        scan_time = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        esc = html.escape

        stats = [
            ("", summary.total_endpoints, "Endpoints"),
            ("critical", summary.critical_count, "Critical"),
            ("high", summary.high_count, "High"),
            ("medium", summary.medium_count, "Medium"),
            ("low", summary.low_count, "Low"),
            ("ok", summary.ok_count, "OK"),
        ]
        stats_html = "\n".join(
            f'            <div class="stat {css}">'
            f'<div class="stat-value">{value}</div>'
            f'<div class="stat-label">{label}</div></div>'
            for css, value, label in stats
        )

        rows = []
        for r in results:
            severity = r.max_severity()
            vulns = "".join(
                f'<div><span class="vuln-type">{esc(v.vuln_type.label)}:</span> '
                f'{esc(v.description)}</div>'
                for v in r.vulnerabilities
            )
            details = f'<div class="vuln-details">{vulns}</div>' if vulns else ""
            statuses = "".join(
                f"<td>{esc(AccessControlMatrix.format_status(r.get_response(role)))}</td>"
                for role in (Role.ADMIN, Role.USER, Role.ANONYMOUS)
            )
            rows.append(
                f"                <tr><td>{esc(r.endpoint.display_path())}{details}</td>"
                f"{statuses}"
                f'<td><span class="severity {cls.severity_class(severity)}">'
                f'{severity.value if severity else "OK"}</span></td></tr>'
            )
        rows_html = "\n".join(rows)

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Authopsy Scan Report</title>
    <style>
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #0d1117; color: #c9d1d9; line-height: 1.6; }}
        .container {{ max-width: 1200px; margin: 0 auto; padding: 2rem; }}
        h1 {{ color: #58a6ff; margin-bottom: 0.5rem; }}
        .subtitle {{ color: #8b949e; margin-bottom: 2rem; }}
        .summary {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr)); gap: 1rem; margin-bottom: 2rem; }}
        .stat {{ background: #161b22; border: 1px solid #30363d; border-radius: 6px; padding: 1rem; text-align: center; }}
        .stat-value {{ font-size: 2rem; font-weight: bold; }}
        .stat-label {{ color: #8b949e; font-size: 0.875rem; }}
        .critical .stat-value, .high .stat-value {{ color: #f85149; }}
        .medium .stat-value {{ color: #d29922; }}
        .low .stat-value {{ color: #58a6ff; }}
        .ok .stat-value {{ color: #3fb950; }}
        table {{ width: 100%; border-collapse: collapse; background: #161b22; border: 1px solid #30363d; }}
        th, td {{ padding: 0.75rem 1rem; text-align: left; border-bottom: 1px solid #30363d; }}
        th {{ background: #21262d; font-weight: 600; }}
        .severity {{ padding: 0.25rem 0.5rem; border-radius: 4px; font-size: 0.75rem; font-weight: 600; }}
        .severity.critical, .severity.high {{ background: #f8514933; color: #f85149; }}
        .severity.medium {{ background: #d2992233; color: #d29922; }}
        .severity.low {{ background: #58a6ff33; color: #58a6ff; }}
        .severity.info {{ background: #8b949e33; color: #8b949e; }}
        .severity.ok {{ background: #3fb95033; color: #3fb950; }}
        .vuln-details {{ font-size: 0.875rem; color: #8b949e; margin-top: 0.5rem; }}
        .vuln-type {{ color: #f0883e; font-weight: 500; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Authopsy Scan Report</h1>
        <p class="subtitle">Generated: {scan_time}</p>
        <div class="summary">
{stats_html}
        </div>
        <table>
            <thead>
                <tr><th>Endpoint</th><th>Admin</th><th>User</th><th>Anon</th><th>Status</th></tr>
            </thead>
            <tbody>
{rows_html}
            </tbody>
        </table>
    </div>
</body>
</html>"""

    @classmethod
    def export(cls, results: List[ScanResult], path: str) -> None:
        try:
            Path(path).write_text(cls.render(results))
        except OSError as e:
            raise ReportError(f"Failed to write to {path}: {e}") from e
        logger.info(f"Saved HTML report: {path}")
