"""
Check Base
Shared helpers for concrete health checks.
"""

import logging
import time
from typing import Dict, Any, List, Optional

from wp_healer.core.interfaces import Check
from wp_healer.core.models import Target, CheckResult, CheckStatus, CheckPriority, CheckType

logger = logging.getLogger(__name__)


def status_for_score(score: int) -> CheckStatus:
    """PASS at 80 and above, WARNING at 60 and above, FAIL below"""
    if score >= 80:
        return CheckStatus.PASS
    if score >= 60:
        return CheckStatus.WARNING
    return CheckStatus.FAIL


class BaseCheck(Check):
    """
    Base class for checks running over the remote command runner.

    Subclasses set check_type and _priority and implement _execute().
    Exceptions raised by _execute() propagate to the CheckRunner, which
    turns them into ERROR results.
    """

    check_type: CheckType
    _priority: CheckPriority = CheckPriority.MEDIUM
    name: str = ''

    def __init__(self, runner):
        """
        Args:
            runner (CommandRunner): Remote command runner
        """
        self.runner = runner

    def priority(self) -> CheckPriority:
        return self._priority

    async def check(self, target: Target, path: str, domain: str) -> CheckResult:
        start = time.time()
        result = await self._execute(target, path, domain)
        result.duration = (time.time() - start) * 1000
        result.priority = self._priority
        return result

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        raise NotImplementedError

    async def _output(self, target: Target, command: str, timeout_ms: Optional[int] = None) -> str:
        return await self.runner.output(target.server_id, command, timeout_ms)

    def _result(self, status: CheckStatus, score: int, message: str,
                details: Optional[Dict[str, Any]] = None,
                recommendations: Optional[List[str]] = None) -> CheckResult:
        return CheckResult(
            check_type=self.check_type,
            status=status,
            score=score,
            message=message,
            details=details,
            recommendations=recommendations,
            priority=self._priority
        )

    def passed(self, message: str, details: Optional[Dict[str, Any]] = None) -> CheckResult:
        return self._result(CheckStatus.PASS, 100, message, details)

    def scored(self, score: int, message: str, details: Optional[Dict[str, Any]] = None,
               recommendations: Optional[List[str]] = None) -> CheckResult:
        score = max(0, score)
        return self._result(status_for_score(score), score, message, details, recommendations)

    def warn(self, message: str, details: Optional[Dict[str, Any]] = None,
             recommendation: Optional[str] = None, score: int = 60) -> CheckResult:
        return self._result(CheckStatus.WARNING, score, message, details,
                            [recommendation] if recommendation else [])

    def fail(self, message: str, details: Optional[Dict[str, Any]] = None,
             recommendation: Optional[str] = None, score: int = 0) -> CheckResult:
        return self._result(CheckStatus.FAIL, score, message, details,
                            [recommendation] if recommendation else [])

    def skipped(self, message: str, details: Optional[Dict[str, Any]] = None) -> CheckResult:
        return self._result(CheckStatus.SKIPPED, 100, message, details)
