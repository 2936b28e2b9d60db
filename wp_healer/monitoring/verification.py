"""
Verification Engine
Independently re-probes a site after remediation and scores it across
HTTP, content, error log, WordPress functionality and performance.
"""

import asyncio
import logging
import re
import time
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

import aiohttp

from wp_healer.core.models import DiagnosisType
from wp_healer.core.remote_executor import CommandRunner
from wp_healer.diagnosis.probes import HttpProbe, find_wsod_indicator, is_blank_page, MIN_HEALTHY_BODY_SIZE

logger = logging.getLogger(__name__)

# Maximum points per dimension
HTTP_POINTS = 20
CONTENT_POINTS = 25
ERROR_LOG_POINTS = 20
ERROR_LOG_UNREADABLE_POINTS = 15
FUNCTIONALITY_POINTS = 20
PERFORMANCE_POINTS = 15

CONTENT_PENALTIES = [
    (re.compile(r'fatal error', re.IGNORECASE), 25, 'Fatal Error'),
    (re.compile(r'parse error', re.IGNORECASE), 25, 'Parse Error'),
    (re.compile(r'syntax error', re.IGNORECASE), 25, 'Syntax Error'),
    (re.compile(r'database error', re.IGNORECASE), 20, 'Database Error'),
    (re.compile(r'warning:', re.IGNORECASE), 5, 'PHP Warning'),
    (re.compile(r'notice:', re.IGNORECASE), 2, 'PHP Notice')
]

METRIC_ERROR_INDICATORS = [
    re.compile(r'fatal error', re.IGNORECASE),
    re.compile(r'parse error', re.IGNORECASE),
    re.compile(r'syntax error', re.IGNORECASE),
    re.compile(r'database error', re.IGNORECASE),
    re.compile(r'warning:', re.IGNORECASE)
]

FUNCTIONALITY_COMMANDS = [
    ('core version', 5, 'Core accessible'),
    ('db check', 10, 'Database accessible'),
    ('plugin list --status=active', 5, 'Plugins accessible')
]

LOG_TIMESTAMP = re.compile(r'\[(\d{2}-\w{3}-\d{4} \d{2}:\d{2}:\d{2})')
RECENT_ERROR_MARKERS = ('Fatal error', 'Parse error', 'Warning')
RECENT_ERROR_WINDOW = timedelta(minutes=5)


class PageSnapshot:
    """One fetch of the site's front page"""

    def __init__(self, status: int, body: str, response_time: float):
        self.status = status
        self.body = body
        self.response_time = response_time


def verification_check(name: str, passed: bool, score: int, details: str, start: float) -> Dict[str, Any]:
    return {
        'name': name,
        'passed': passed,
        'score': score,
        'details': details,
        'duration': (time.time() - start) * 1000
    }


class VerificationEngine:
    """
    Scores a healed site out of 100:
    - HTTP status 20
    - Content analysis 25
    - Error log 20 (15 when the log cannot be read)
    - WordPress functionality 20
    - Performance 15
    """

    def __init__(self, runner: CommandRunner, http_probe: HttpProbe, min_score: int = 80):
        """
        Initialize the verification engine

        Args:
            runner (CommandRunner): Remote command runner
            http_probe (HttpProbe): Page fetcher
            min_score (int): Score required to pass
        """
        self.runner = runner
        self.http_probe = http_probe
        self.min_score = min_score

    @classmethod
    def from_config(cls, runner: CommandRunner, http_probe: HttpProbe, config) -> 'VerificationEngine':
        return cls(runner, http_probe, config.get('healing.min_verification_score', 80))

    async def verify(self, server_id: str, site_path: str, domain: str,
                     diagnosis_type: Optional[DiagnosisType] = None) -> Dict[str, Any]:
        """
        Verify a site after healing

        Args:
            server_id (str): Remote execution handle
            site_path (str): WordPress root
            domain (str): Domain to fetch
            diagnosis_type (DiagnosisType, optional): Diagnosis being verified

        Returns:
            Dict[str, Any]: 'score', 'passed', 'checks' and 'metrics'
        """
        logger.info(f"Starting verification for {domain}"
                    + (f" ({diagnosis_type.value})" if diagnosis_type else ""))

        start = time.time()
        (page, fetch_error), error_logs, functionality = await asyncio.gather(
            self._fetch(domain),
            self._check_error_logs(server_id, site_path),
            self._check_functionality(server_id, site_path)
        )
        checks = [
            self._check_http(page, fetch_error, start),
            self._check_content(page, fetch_error, start),
            error_logs,
            functionality,
            self._check_performance(page, fetch_error, start)
        ]

        score = sum(check['score'] for check in checks)
        passed = score >= self.min_score
        logger.info(f"Verification completed: {score}/100 ({'PASSED' if passed else 'FAILED'})")

        return {
            'score': score,
            'passed': passed,
            'checks': checks,
            'metrics': self._collect_metrics(page)
        }

    async def _fetch(self, domain: str):
        start = time.time()
        try:
            status, body = await self.http_probe.fetch(f"https://{domain}")
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Verification fetch failed for {domain}: {str(e)}")
            return None, str(e) or type(e).__name__
        return PageSnapshot(status, body, (time.time() - start) * 1000), None

    def _check_http(self, page: Optional[PageSnapshot], fetch_error: Optional[str], start: float) -> Dict[str, Any]:
        name = 'HTTP Status'
        if page is None:
            return verification_check(name, False, 0, fetch_error, start)

        if page.status != 200:
            return verification_check(name, False, 0, f"HTTP {page.status}", start)
        if find_wsod_indicator(page.body):
            return verification_check(name, False, 0, 'WSOD detected in content', start)
        if is_blank_page(page.body):
            return verification_check(name, False, 0, 'Blank page detected', start)
        return verification_check(
            name, True, HTTP_POINTS,
            f"HTTP 200 OK, {len(page.body)} bytes, no WSOD indicators", start
        )

    def _check_content(self, page: Optional[PageSnapshot], fetch_error: Optional[str], start: float) -> Dict[str, Any]:
        name = 'Content Analysis'
        if page is None:
            return verification_check(name, False, 0, fetch_error, start)

        body = page.body
        score = CONTENT_POINTS
        issues: List[str] = []
        for pattern, penalty, label in CONTENT_PENALTIES:
            if pattern.search(body):
                score -= penalty
                issues.append(label)

        if not (re.search(r'<html', body, re.IGNORECASE) and re.search(r'</html>', body, re.IGNORECASE)):
            score -= 10
            issues.append('No HTML structure')
        if not re.search(r'<title>', body, re.IGNORECASE):
            score -= 5
            issues.append('No title tag')
        if len(body) <= 1000:
            score -= 5
            issues.append('Insufficient content')

        score = max(0, score)
        details = f"Issues: {', '.join(issues)}" if issues else 'Content looks healthy'
        return verification_check(name, score >= 20, score, details, start)

    async def _check_error_logs(self, server_id: str, site_path: str) -> Dict[str, Any]:
        name = 'Error Logs'
        start = time.time()
        result = await self.runner.run(
            server_id,
            f"tail -50 {site_path}/wp-content/debug.log 2>/dev/null || "
            f"tail -50 {site_path}/error_log 2>/dev/null || echo \"No logs\""
        )
        if not result.success:
            return verification_check(
                name, True, ERROR_LOG_UNREADABLE_POINTS,
                f"Could not check logs: {result.error or 'unknown error'}", start
            )

        error_count = count_recent_errors(result.output)
        if error_count > 10:
            score = 0
        elif error_count > 5:
            score = 5
        elif error_count > 0:
            score = 15
        else:
            score = ERROR_LOG_POINTS

        details = 'No recent errors' if error_count == 0 else f"{error_count} recent errors found"
        return verification_check(name, error_count == 0, score, details, start)

    async def _check_functionality(self, server_id: str, site_path: str) -> Dict[str, Any]:
        name = 'WordPress Functionality'
        start = time.time()
        score = 0
        results = []

        outcomes = await asyncio.gather(*[
            self.runner.wp(server_id, site_path, command) for command, _, _ in FUNCTIONALITY_COMMANDS
        ])
        for (_, points, label), result in zip(FUNCTIONALITY_COMMANDS, outcomes):
            output = f"{result.output}\n{result.error or ''}".lower()
            if result.success and 'error' not in output and 'failed' not in output:
                score += points
                results.append(f"OK {label}")
            else:
                results.append(f"FAIL {label}")

        return verification_check(name, score >= 15, score, ', '.join(results), start)

    def _check_performance(self, page: Optional[PageSnapshot], fetch_error: Optional[str],
                           start: float) -> Dict[str, Any]:
        name = 'Performance'
        if page is None:
            return verification_check(name, False, 0, fetch_error, start)

        score = PERFORMANCE_POINTS
        notes = []
        response_time = round(page.response_time)
        if response_time > 5000:
            score -= 10
            notes.append(f"Slow response: {response_time}ms")
        elif response_time > 3000:
            score -= 5
            notes.append(f"Moderate response: {response_time}ms")
        else:
            notes.append(f"Fast response: {response_time}ms")

        page_size = len(page.body)
        if page_size < MIN_HEALTHY_BODY_SIZE:
            score -= 5
            notes.append(f"Small page: {page_size} bytes")
        else:
            notes.append(f"Normal page: {page_size} bytes")

        score = max(0, score)
        return verification_check(name, score >= 10, score, ', '.join(notes), start)

    def _collect_metrics(self, page: Optional[PageSnapshot]) -> Dict[str, Any]:
        if page is None:
            return {
                'response_time': 0,
                'page_size': 0,
                'http_status': 0,
                'has_errors': True,
                'error_count': 1,
                'load_time': 0
            }

        error_count = sum(len(pattern.findall(page.body)) for pattern in METRIC_ERROR_INDICATORS)
        return {
            'response_time': page.response_time,
            'page_size': len(page.body),
            'http_status': page.status,
            'has_errors': error_count > 0,
            'error_count': error_count,
            'load_time': page.response_time
        }


def count_recent_errors(log_output: str, now: Optional[datetime] = None) -> int:
    """Count fatal, parse and warning lines logged within the last five minutes"""
    since = (now or datetime.now()) - RECENT_ERROR_WINDOW
    count = 0
    for line in log_output.splitlines():
        match = LOG_TIMESTAMP.search(line)
        if not match:
            continue
        try:
            logged_at = datetime.strptime(match.group(1), '%d-%b-%Y %H:%M:%S')
        except ValueError:
            continue
        if logged_at >= since and any(marker in line for marker in RECENT_ERROR_MARKERS):
            count += 1
    return count
