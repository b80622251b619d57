"""
Fuzz Bypass Detector for Authopsy.

Replays each endpoint as the regular user with one query-parameter or
header mutation at a time and compares the outcome with an unmodified
baseline request.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from deepdiff import DeepDiff

from .differ import count_json_keys
from .http_client import HTTPClient
from .models import (
    Endpoint,
    Evidence,
    EvidenceType,
    FuzzConfig,
    FuzzResult,
    FuzzType,
    ResponseInfo,
    Severity,
    Vulnerability,
    VulnType,
)
from .mutations import header_mutations, param_mutations

logger = logging.getLogger(__name__)

BLOCKED_STATUSES = (401, 403)

# A leak needs the body to grow by more than half and by more than this many bytes
LEAK_SIZE_RATIO = 1.5
LEAK_MIN_GAIN = 100
LEAK_MIN_EXTRA_KEYS = 3

ProgressCallback = Callable[[int], None]


def format_trigger(mutation: Dict[str, str], fuzz_type: FuzzType) -> str:
    """Render a mutation the way it is sent: `k=v&...` or `Name: v, ...`."""
    if fuzz_type is FuzzType.HEADER:
        return ", ".join(f"{k}: {v}" for k, v in mutation.items())
    return "&".join(f"{k}={v}" for k, v in mutation.items())


def _describe(mutation: Dict[str, str]) -> str:
    return ", ".join(f"{k}={v}" for k, v in mutation.items())


class FuzzerScanner:
    """
    Header and query-parameter bypass fuzzer.

    - Baseline 401/403: a mutation that yields 200 is an authorization bypass.
    - Baseline 200: a mutation that inflates the body or its key count is a
      data leak.
    - Any other baseline: the endpoint is skipped.

    Each request (baseline or mutation) holds one slot of the shared
    semaphore, so mutations of different endpoints may interleave.
    """

    def __init__(self, http_client: HTTPClient, config: FuzzConfig):
        self.http_client = http_client
        self.config = config
        self.user_role = config.user
        self.semaphore = asyncio.Semaphore(config.concurrency)
        self.param_mutations = param_mutations()
        self.header_mutations = header_mutations()

    @property
    def mutations_per_endpoint(self) -> int:
        return len(self.param_mutations) + len(self.header_mutations)

    def total_tests(self, endpoints: List[Endpoint]) -> int:
        return len(endpoints) * self.mutations_per_endpoint

    async def fuzz_all(
        self,
        endpoints: List[Endpoint],
        include_clean: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[FuzzResult]:
        """
        Fuzz every endpoint in input order.

        Args:
            endpoints: Endpoints to fuzz
            include_clean: Also return attempts that produced no finding
            on_progress: Called with the number of mutation attempts completed

        Returns:
            FuzzResults grouped by endpoint, parameter mutations first
        """
        logger.info(
            f"Fuzzing {len(endpoints)} endpoints with "
            f"{self.mutations_per_endpoint} mutations each"
        )

        all_results: List[FuzzResult] = []
        for endpoint in endpoints:
            results = await self.fuzz_endpoint(endpoint, on_progress)
            all_results.extend(results)

        findings = [r for r in all_results if r.vulnerability is not None]
        logger.info(f"Fuzzing complete: {len(findings)} findings")
        return all_results if include_clean else findings

    async def fuzz_endpoint(
        self,
        endpoint: Endpoint,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[FuzzResult]:
        """Run every mutation against one endpoint, returning every attempt."""
        baseline = await self.get_baseline(endpoint)

        if baseline.status in BLOCKED_STATUSES:
            check_bypass = True
        elif baseline.status == 200:
            check_bypass = False
        else:
            logger.debug(
                f"Skipping {endpoint.key}: baseline status {baseline.status}"
                + (f" ({baseline.error})" if baseline.error else "")
            )
            if on_progress:
                on_progress(self.mutations_per_endpoint)
            return []

        attempts = [
            self._try_mutation(endpoint, baseline, m, FuzzType.QUERY_PARAM, check_bypass, on_progress)
            for m in self.param_mutations
        ] + [
            self._try_mutation(endpoint, baseline, m, FuzzType.HEADER, check_bypass, on_progress)
            for m in self.header_mutations
        ]
        return list(await asyncio.gather(*attempts))

    async def get_baseline(self, endpoint: Endpoint) -> ResponseInfo:
        async with self.semaphore:
            return await self.http_client.send(
                endpoint,
                self.user_role,
                path_params=self.config.path_params,
            )

    async def _try_mutation(
        self,
        endpoint: Endpoint,
        baseline: ResponseInfo,
        mutation: Dict[str, str],
        fuzz_type: FuzzType,
        check_bypass: bool,
        on_progress: Optional[ProgressCallback],
    ) -> FuzzResult:
        async with self.semaphore:
            response = await self.http_client.send(
                endpoint,
                self.user_role,
                path_params=self.config.path_params,
                query_params=mutation if fuzz_type is FuzzType.QUERY_PARAM else None,
                extra_headers=mutation if fuzz_type is FuzzType.HEADER else None,
            )

        if check_bypass:
            vuln = self.detect_bypass(baseline, response, mutation)
        else:
            vuln = self.detect_data_leak(baseline, response, mutation)

        if vuln:
            logger.warning(f"[VULN] {endpoint.key}: {vuln.description}")

        if on_progress:
            on_progress(1)

        return FuzzResult(
            endpoint=endpoint.display_path(),
            fuzz_type=fuzz_type,
            trigger=format_trigger(mutation, fuzz_type),
            baseline_status=baseline.status,
            fuzzed_status=response.status,
            baseline_size=baseline.size,
            fuzzed_size=response.size,
            vulnerability=vuln,
        )

    @staticmethod
    def detect_bypass(
        baseline: ResponseInfo,
        fuzzed: ResponseInfo,
        mutation: Dict[str, str],
    ) -> Optional[Vulnerability]:
        """A blocked baseline that turns into 200 under a mutation."""
        if baseline.status not in BLOCKED_STATUSES or fuzzed.status != 200:
            return None

        return Vulnerability(
            severity=Severity.CRITICAL,
            vuln_type=VulnType.BROKEN_ACCESS_CONTROL,
            description=f"Authorization bypass via: {_describe(mutation)}",
            evidence=Evidence(
                evidence_type=EvidenceType.STATUS_MATRIX,
                details=(
                    f"Baseline: {baseline.status} -> Fuzzed: {fuzzed.status} "
                    f"(size: {baseline.size} -> {fuzzed.size})"
                ),
                data={"baseline": baseline.status, "fuzzed": fuzzed.status},
            ),
        )

    @staticmethod
    def detect_data_leak(
        baseline: ResponseInfo,
        fuzzed: ResponseInfo,
        mutation: Dict[str, str],
    ) -> Optional[Vulnerability]:
        """A visible baseline that exposes noticeably more under a mutation."""
        if baseline.status != 200 or fuzzed.status != 200:
            return None

        growth = fuzzed.size / max(baseline.size, 1)
        if growth > LEAK_SIZE_RATIO and fuzzed.size > baseline.size + LEAK_MIN_GAIN:
            return Vulnerability(
                severity=Severity.HIGH,
                vuln_type=VulnType.DATA_LEAKAGE,
                description=f"Data leak via: {_describe(mutation)}",
                evidence=Evidence(
                    evidence_type=EvidenceType.LENGTH_COMPARISON,
                    details=(
                        f"Response size increased {(growth - 1) * 100:.0f}%: "
                        f"{baseline.size} -> {fuzzed.size} bytes"
                    ),
                    data={"baseline": baseline.size, "fuzzed": fuzzed.size, "ratio": growth},
                ),
            )

        if baseline.body is not None and fuzzed.body is not None:
            base_keys = count_json_keys(baseline.body)
            fuzz_keys = count_json_keys(fuzzed.body)

            if fuzz_keys > base_keys + LEAK_MIN_EXTRA_KEYS:
                added = DeepDiff(baseline.body, fuzzed.body).get("dictionary_item_added", [])
                return Vulnerability(
                    severity=Severity.HIGH,
                    vuln_type=VulnType.DATA_LEAKAGE,
                    description=f"Extra fields exposed via: {_describe(mutation)}",
                    evidence=Evidence(
                        evidence_type=EvidenceType.KEY_COMPARISON,
                        details=f"JSON keys increased: {base_keys} -> {fuzz_keys} keys",
                        data={
                            "baseline": base_keys,
                            "fuzzed": fuzz_keys,
                            "added": sorted(str(item) for item in added),
                        },
                    ),
                )

        return None
