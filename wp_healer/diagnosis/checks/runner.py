"""
Check Registry and Runner
Maps check types to implementations and runs a batch of checks with
per-check timeouts and isolated error capture.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from wp_healer.core.interfaces import Check
from wp_healer.core.models import Target, CheckResult, CheckStatus, CheckPriority, CheckType

logger = logging.getLogger(__name__)


class CheckRegistry:
    """Typed map of check type to check implementation"""

    def __init__(self):
        self._checks: Dict[CheckType, Check] = {}

    def register(self, check: Check):
        """
        Register a check, replacing any previous one of the same type

        Args:
            check (Check): Check implementation
        """
        if check.check_type in self._checks:
            logger.debug(f"Replacing check implementation for {check.check_type.value}")
        self._checks[check.check_type] = check

    def get(self, check_type: CheckType) -> Optional[Check]:
        return self._checks.get(check_type)

    def priority_of(self, check_type: CheckType) -> CheckPriority:
        check = self._checks.get(check_type)
        return check.priority() if check else CheckPriority.MEDIUM

    def types(self) -> List[CheckType]:
        return list(self._checks)

    def __contains__(self, check_type: CheckType) -> bool:
        return check_type in self._checks

    def __len__(self) -> int:
        return len(self._checks)


class CheckRunner:
    """
    Runs checks against a target.

    A check that raises or exceeds its timeout yields an ERROR result with
    score 0; it never prevents the other checks from completing.
    """

    def __init__(self, registry: CheckRegistry):
        self.registry = registry

    async def run(self,
                  target: Target,
                  path: str,
                  domain: str,
                  check_types: List[CheckType],
                  timeout_ms: int = 60000,
                  parallel: bool = True) -> List[CheckResult]:
        """
        Run a batch of checks

        Args:
            target (Target): Site being checked
            path (str): Filesystem path to check
            domain (str): Domain to check
            check_types (List[CheckType]): Checks to run
            timeout_ms (int): Timeout applied to each check
            parallel (bool): Run checks concurrently

        Returns:
            List[CheckResult]: One result per requested check, in request order
        """
        if parallel:
            return list(await asyncio.gather(
                *[self._run_one(target, path, domain, check_type, timeout_ms) for check_type in check_types]
            ))

        results = []
        for check_type in check_types:
            results.append(await self._run_one(target, path, domain, check_type, timeout_ms))
        return results

    async def _run_one(self, target: Target, path: str, domain: str,
                       check_type: CheckType, timeout_ms: int) -> CheckResult:
        check = self.registry.get(check_type)
        if check is None:
            logger.warning(f"No check registered for type: {check_type.value}")
            return CheckResult(
                check_type=check_type,
                status=CheckStatus.SKIPPED,
                score=0,
                message=f"No check registered for {check_type.value}"
            )

        start = time.time()
        try:
            return await asyncio.wait_for(check.check(target, path, domain), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout_ms}ms"
        except Exception as e:
            reason = str(e) or type(e).__name__

        logger.error(f"Check {check_type.value} failed: {reason}")
        return CheckResult(
            check_type=check_type,
            status=CheckStatus.ERROR,
            score=0,
            message=f"Check failed: {reason}",
            details={'error': reason},
            recommendations=['Retry the check'],
            duration=(time.time() - start) * 1000,
            priority=check.priority()
        )
