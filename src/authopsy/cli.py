"""
CLI Interface for Authopsy.

Provides the command-line interface using Typer and Rich.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .discovery import (
    DiscoveryError,
    EndpointParseError,
    EndpointParser,
    OpenApiParser,
    deduplicate_endpoints,
    filter_endpoints,
)
from .engine import Scanner
from .fuzzer_engine import FuzzerScanner
from .http_client import HTTPClient
from .models import Endpoint, FuzzConfig, FuzzResult, Role, RoleConfig, ScanConfig, ScanResult, Severity
from .reporter import HtmlExporter, JsonExporter, ReportError, ReportGenerator

# Initialize
app = typer.Typer(
    name="authopsy",
    help="Role-based access control scanner - find endpoints leaking admin-only data",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

SETUP_ERRORS = (DiscoveryError, EndpointParseError, ReportError, ValidationError)


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]Authopsy[/bold blue] v{__version__}")
        raise typer.Exit()


def parse_csv(value: Optional[str]) -> List[str]:
    """Split a comma-separated option into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_params(value: Optional[str]) -> Dict[str, str]:
    """Parse path parameter overrides in format 'name=value,name2=value2'."""
    params: Dict[str, str] = {}
    for item in parse_csv(value):
        name, sep, val = item.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Path parameter must be in format 'name=value': '{item}'")
        params[name.strip()] = val.strip()
    return params


def load_bodies(path: Optional[str]) -> Dict[str, Any]:
    """Load request body overrides: a JSON object keyed by 'METHOD /path'."""
    if not path:
        return {}
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        raise typer.BadParameter(f"Cannot load request bodies from {path}: {e}")
    if not isinstance(data, dict):
        raise typer.BadParameter(f"Request bodies file {path} must hold a JSON object")
    return data


def load_endpoints(spec: Optional[str], endpoints: Optional[str], skip_paths: List[str]) -> List[Endpoint]:
    """Collect endpoints from an OpenAPI spec and/or an endpoint list or file."""
    if not spec and not endpoints:
        raise typer.BadParameter("Provide --spec and/or --endpoints")

    collected: List[Endpoint] = []
    if spec:
        collected.extend(OpenApiParser().parse_file(spec))
    if endpoints:
        if Path(endpoints).is_file():
            collected.extend(EndpointParser.load_file(endpoints))
        else:
            collected.extend(EndpointParser.parse(endpoints))

    unique = deduplicate_endpoints(collected)
    kept = filter_endpoints(unique, skip_paths)
    logger.info(f"Loaded {len(kept)} endpoints ({len(collected)} before dedup and skip filter)")
    if len(kept) != len(unique):
        console.print(f"[dim]Skipped {len(unique) - len(kept)} endpoints matching --skip-paths[/dim]")
    return kept


def _fail(message: str) -> None:
    console.print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(1)


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """
    Authopsy - Role-Based Access Control Scanner

    Requests each endpoint as admin, user and anonymous caller and compares
    the responses to detect broken access control.
    """
    pass


@app.command()
def scan(
    target: str = typer.Argument(..., help="Target API base URL (e.g., https://api.example.com)"),
    admin: str = typer.Option(..., "--admin", help="Admin credential (sent verbatim, e.g. 'Bearer ey...')"),
    user: str = typer.Option(..., "--user", help="Regular user credential"),
    anon: bool = typer.Option(True, "--anon/--no-anon", help="Also request without credentials"),
    header: str = typer.Option("Authorization", "--header", help="Header carrying the credential"),
    spec: Optional[str] = typer.Option(None, "--spec", "-s", help="OpenAPI/Swagger spec (JSON or YAML)"),
    endpoints: Optional[str] = typer.Option(
        None, "--endpoints", "-e",
        help="Endpoints as 'GET /a, POST /b' or a file with one per line"
    ),
    concurrency: int = typer.Option(50, "--concurrency", "-c", help="Concurrent endpoint scans"),
    timeout: int = typer.Option(10, "--timeout", "-t", help="Request timeout in seconds"),
    output: Optional[str] = typer.Option(
        None, "--output", "-o",
        help="Export results (.html for HTML, anything else JSON)"
    ),
    ignore: Optional[str] = typer.Option(None, "--ignore", help="Comma-separated fields to ignore"),
    params: Optional[str] = typer.Option(None, "--params", "-p", help="Path params: 'id=5,userId=7'"),
    bodies: Optional[str] = typer.Option(None, "--bodies", "-b", help="JSON file of bodies keyed by 'METHOD /path'"),
    skip_paths: Optional[str] = typer.Option(None, "--skip-paths", help="Comma-separated path substrings to skip"),
    public_paths: Optional[str] = typer.Option(None, "--public-paths", help="Comma-separated public path substrings"),
    proxy: Optional[str] = typer.Option(None, "--proxy", help="Proxy URL (e.g., http://127.0.0.1:8080)"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Skip TLS certificate verification"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
) -> None:
    """
    Scan an API for broken access control across roles.

    Example:
        authopsy scan https://api.example.com \\
            --admin "Bearer ADMIN_TOKEN" --user "Bearer USER_TOKEN" \\
            --spec openapi.json
    """
    setup_logging(verbose, debug)

    roles = [
        RoleConfig(role=Role.ADMIN, token=admin, header_name=header),
        RoleConfig(role=Role.USER, token=user, header_name=header),
    ]
    if anon:
        roles.append(RoleConfig(role=Role.ANONYMOUS, header_name=header))

    try:
        config = ScanConfig(
            target=target,
            roles=roles,
            concurrency=concurrency,
            timeout=timeout,
            path_params=parse_params(params),
            request_bodies=load_bodies(bodies),
            ignore_fields=parse_csv(ignore),
            public_paths=parse_csv(public_paths),
            skip_paths=parse_csv(skip_paths),
            verify_ssl=not insecure,
            proxy=proxy,
        )
        endpoint_list = load_endpoints(spec, endpoints, config.skip_paths)
    except SETUP_ERRORS as e:
        _fail(f"Error: {e}")

    if not endpoint_list:
        _fail("No endpoints to scan")

    console.print()
    console.print(
        Panel(
            "[bold blue]AUTHOPSY[/bold blue]\n"
            f"[dim]Target: {target}[/dim]\n"
            f"[dim]Endpoints: {len(endpoint_list)}[/dim]\n"
            f"[dim]Roles: {', '.join(rc.role.value for rc in roles)}[/dim]",
            border_style="blue",
        )
    )

    try:
        results = asyncio.run(_run_scan(config, endpoint_list, show_path=verbose))
    except KeyboardInterrupt:
        console.print("\n[yellow]Scan interrupted by user[/yellow]")
        raise typer.Exit(130)

    ReportGenerator(console).generate_terminal(results)

    if output:
        try:
            if output.lower().endswith(".html"):
                HtmlExporter.export(results, output)
            else:
                JsonExporter.export(results, output)
        except ReportError as e:
            _fail(f"Error: {e}")
        console.print(f"[green]✓[/green] Saved report: {output}")

    serious = any(
        r.max_severity() in (Severity.CRITICAL, Severity.HIGH) for r in results
    )
    if serious:
        raise typer.Exit(1)


async def _run_scan(config: ScanConfig, endpoints: List[Endpoint], show_path: bool = False) -> List[ScanResult]:
    """Run the scan asynchronously with a progress bar."""
    async with HTTPClient(
        config.target,
        timeout=config.timeout,
        verify_ssl=config.verify_ssl,
        custom_headers=config.custom_headers,
        proxy=config.proxy,
        max_connections=config.concurrency,
    ) as http_client:
        with Progress(
            SpinnerColumn(),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Scanning...", total=len(endpoints))

            def advance(endpoint: Endpoint) -> None:
                progress.update(
                    task,
                    advance=1,
                    description=endpoint.key if show_path else "Scanning...",
                )

            scanner = Scanner(http_client, config)
            results = await scanner.scan_all(endpoints, on_progress=advance)
            progress.update(task, description="[green]Scan complete[/green]")

    return results


@app.command()
def fuzz(
    target: str = typer.Argument(..., help="Target API base URL"),
    user: str = typer.Option(..., "--user", help="Regular user credential (sent verbatim)"),
    header: str = typer.Option("Authorization", "--header", help="Header carrying the credential"),
    spec: Optional[str] = typer.Option(None, "--spec", "-s", help="OpenAPI/Swagger spec (JSON or YAML)"),
    endpoints: Optional[str] = typer.Option(
        None, "--endpoints", "-e",
        help="Endpoints as 'GET /a, POST /b' or a file with one per line"
    ),
    concurrency: int = typer.Option(20, "--concurrency", "-c", help="Concurrent requests"),
    timeout: int = typer.Option(10, "--timeout", "-t", help="Request timeout in seconds"),
    params: Optional[str] = typer.Option(None, "--params", "-p", help="Path params: 'id=5,userId=7'"),
    proxy: Optional[str] = typer.Option(None, "--proxy", help="Proxy URL"),
    insecure: bool = typer.Option(False, "--insecure", "-k", help="Skip TLS certificate verification"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
) -> None:
    """
    Fuzz query parameters and headers for authorization bypasses.
    """
    setup_logging(verbose, debug)

    try:
        config = FuzzConfig(
            target=target,
            user=RoleConfig(role=Role.USER, token=user, header_name=header),
            concurrency=concurrency,
            timeout=timeout,
            path_params=parse_params(params),
            verify_ssl=not insecure,
            proxy=proxy,
        )
        endpoint_list = load_endpoints(spec, endpoints, [])
    except SETUP_ERRORS as e:
        _fail(f"Error: {e}")

    if not endpoint_list:
        _fail("No endpoints to fuzz")

    try:
        results = asyncio.run(_run_fuzz(config, endpoint_list))
    except KeyboardInterrupt:
        console.print("\n[yellow]Fuzzing interrupted by user[/yellow]")
        raise typer.Exit(130)

    ReportGenerator(console).print_fuzz_results(results)

    if results:
        raise typer.Exit(1)


async def _run_fuzz(config: FuzzConfig, endpoints: List[Endpoint]) -> List[FuzzResult]:
    """Run the fuzzer asynchronously with a progress bar."""
    async with HTTPClient(
        config.target,
        timeout=config.timeout,
        verify_ssl=config.verify_ssl,
        custom_headers=config.custom_headers,
        proxy=config.proxy,
        max_connections=config.concurrency,
    ) as http_client:
        fuzzer = FuzzerScanner(http_client, config)

        with Progress(
            SpinnerColumn(),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Fuzzing...", total=fuzzer.total_tests(endpoints))
            results = await fuzzer.fuzz_all(
                endpoints,
                on_progress=lambda n: progress.update(task, advance=n),
            )
            progress.update(task, description="[green]Fuzzing complete[/green]")

    return results


@app.command()
def report(
    input: str = typer.Option(..., "--input", "-i", help="JSON export from a previous scan"),
    format: str = typer.Option("html", "--format", "-f", help="Output format: html, json"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file (default: print to terminal)"),
) -> None:
    """
    Re-render a saved scan export.
    """
    setup_logging()

    fmt = format.lower()
    if fmt not in ("html", "json"):
        _fail(f"Unsupported format: '{format}'. Use html or json")

    try:
        results = JsonExporter.load(input)
    except ReportError as e:
        _fail(f"Error: {e}")

    if not output:
        ReportGenerator(console).generate_terminal(results)
        return

    try:
        if fmt == "html":
            HtmlExporter.export(results, output)
        else:
            JsonExporter.export(results, output)
    except ReportError as e:
        _fail(f"Error: {e}")
    console.print(f"[green]✓[/green] Saved {fmt} report: {output}")


@app.command()
def parse(
    spec: str = typer.Option(..., "--spec", "-s", help="OpenAPI/Swagger spec (JSON or YAML)"),
) -> None:
    """
    List the endpoints found in an OpenAPI/Swagger spec.
    """
    setup_logging()

    try:
        endpoint_list = OpenApiParser().parse_file(spec)
    except DiscoveryError as e:
        _fail(f"Error: {e}")

    table = Table(title=f"Endpoints in {spec}", show_header=True, header_style="bold cyan")
    table.add_column("Method", style="cyan")
    table.add_column("Path")
    table.add_column("Path Params")
    table.add_column("Body Example", justify="center")

    for ep in endpoint_list:
        table.add_row(
            ep.method.value,
            ep.path,
            ", ".join(f"{p.name}:{p.param_type.value}" for p in ep.path_params) or "-",
            "yes" if ep.request_body_example is not None else "-",
        )

    console.print()
    console.print(table)
    console.print(f"[dim]{len(endpoint_list)} endpoints[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print()
    console.print(
        Panel(
            f"[bold blue]Authopsy[/bold blue]\n"
            f"Version: {__version__}\n"
            f"Python: {sys.version.split()[0]}",
            border_style="blue",
        )
    )


if __name__ == "__main__":
    app()
