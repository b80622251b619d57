"""
Concurrent Scan Orchestrator for Authopsy.

Requests every endpoint once per configured role and runs the
differential detector on the collected responses.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .detector import VulnerabilityDetector
from .http_client import HTTPClient
from .models import Endpoint, ResponseInfo, Role, ScanConfig, ScanResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Endpoint], None]


class Scanner:
    """
    Multi-role scan engine.

    Endpoints are scanned concurrently, bounded by a single semaphore
    shared across the run. Within one endpoint the roles are requested
    sequentially while the slot is held.
    """

    def __init__(self, http_client: HTTPClient, config: ScanConfig):
        self.http_client = http_client
        self.config = config
        self.roles = config.roles
        self.detector = VulnerabilityDetector(
            length_threshold=config.length_threshold,
            ignore_fields=config.ignore_fields,
        )
        self.semaphore = asyncio.Semaphore(config.concurrency)

    async def scan_all(
        self,
        endpoints: List[Endpoint],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ScanResult]:
        """
        Scan all endpoints.

        Args:
            endpoints: Endpoints to request
            on_progress: Called with each endpoint once its scan finishes

        Returns:
            One ScanResult per endpoint, in input order
        """
        logger.info(
            f"Scanning {len(endpoints)} endpoints as "
            f"{', '.join(rc.role.value for rc in self.roles)} "
            f"(concurrency {self.config.concurrency})"
        )

        results = await asyncio.gather(
            *(self.scan_endpoint(ep, on_progress) for ep in endpoints)
        )

        vulnerable = sum(1 for r in results if r.is_vulnerable())
        logger.info(f"Scan complete: {vulnerable}/{len(results)} endpoints with findings")
        return list(results)

    async def scan_endpoint(
        self,
        endpoint: Endpoint,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanResult:
        """Request one endpoint as every role and analyze the responses."""
        async with self.semaphore:
            start = time.perf_counter()
            responses: Dict[Role, ResponseInfo] = {}

            body = self.get_request_body(endpoint)
            for role_config in self.roles:
                responses[role_config.role] = await self.http_client.send(
                    endpoint,
                    role_config,
                    path_params=self.config.path_params,
                    body=body,
                )

        duration_ms = int((time.perf_counter() - start) * 1000)
        result = ScanResult(endpoint=endpoint, responses=responses, duration_ms=duration_ms)

        vulnerabilities = self.detector.analyze(result, self.is_public(endpoint))
        result = result.with_vulnerabilities(vulnerabilities)

        if vulnerabilities:
            logger.warning(
                f"[VULN] {len(vulnerabilities)} findings in {endpoint.key} "
                f"(max {result.max_severity().value})"
            )

        if on_progress:
            on_progress(endpoint)
        return result

    def is_public(self, endpoint: Endpoint) -> bool:
        return any(p in endpoint.path for p in self.config.public_paths)

    def get_request_body(self, endpoint: Endpoint) -> Optional[Any]:
        """Body override for the endpoint, else its example body, else None."""
        if endpoint.key in self.config.request_bodies:
            return self.config.request_bodies[endpoint.key]
        return endpoint.request_body_example
