"""
Structural Probes
Low-level signal collectors feeding causal diagnosis and verification:
HTTP content probe, maintenance lock, core integrity and database
reachability.
"""

import asyncio
import logging
import re
import time
from typing import Dict, Any, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

# Content markers of a broken WordPress page, matched case-insensitively
WSOD_INDICATORS = [
    'There has been a critical error',
    'Parse error:',
    'Fatal error:',
    'syntax error',
    'Call to undefined',
    'Cannot redeclare',
    'white screen of death',
    'WordPress database error',
    'Error establishing a database connection',
    'Maximum execution time',
    'Allowed memory size',
    "Class '",
    'Uncaught Error',
    'Uncaught Exception',
    'Stack trace:'
]

MIN_HEALTHY_BODY_SIZE = 500
BLANK_BODY_SIZE = 100

NO_CACHE_HEADERS = {
    'User-Agent': 'WP-Healer/1.0',
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0'
}


def find_wsod_indicator(body: str) -> Optional[str]:
    """Return the first failure-content marker found in a page body"""
    lowered = body.lower()
    for indicator in WSOD_INDICATORS:
        if indicator.lower() in lowered:
            return indicator
    return None


def is_blank_page(body: str) -> bool:
    trimmed = body.strip()
    return len(trimmed) == 0 or (len(trimmed) < BLANK_BODY_SIZE and '<' not in trimmed)


class HttpProbeResult:
    """Outcome of an HTTP content probe"""

    def __init__(self,
                 status: int,
                 effective_status: int,
                 body: str = '',
                 url: Optional[str] = None,
                 response_time: float = 0,
                 reason: Optional[str] = None):
        """
        Args:
            status (int): Literal HTTP status, 0 when unreachable
            effective_status (int): Status used for diagnosis, 500 when the content looks broken
            body (str): Response body
            url (str, optional): URL that answered
            response_time (float): Milliseconds until the body was read
            reason (str, optional): Why the content was judged broken
        """
        self.status = status
        self.effective_status = effective_status
        self.body = body
        self.url = url
        self.response_time = response_time
        self.reason = reason

    @property
    def size(self) -> int:
        return len(self.body)

    @property
    def healthy(self) -> bool:
        return self.effective_status == 200

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'effective_status': self.effective_status,
            'url': self.url,
            'size': self.size,
            'response_time': self.response_time,
            'reason': self.reason
        }


class HttpProbe:
    """
    Fetches a site's front page and judges its content.

    A 200 status alone is not healthy: blank bodies, failure-content markers
    and suspiciously small 200 responses downgrade the effective status to 500.
    """

    def __init__(self, timeout: float = 10):
        """
        Args:
            timeout (float): Seconds allowed per protocol attempt
        """
        self.timeout = timeout

    async def fetch(self, url: str) -> Tuple[int, str]:
        """
        Fetch a URL

        Args:
            url (str): URL to fetch

        Returns:
            Tuple[int, str]: HTTP status and body
        """
        async with aiohttp.ClientSession(headers=NO_CACHE_HEADERS) as session:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                allow_redirects=True
            ) as response:
                body = await response.text(errors='replace')
                return response.status, body

    async def probe(self, domain: str) -> HttpProbeResult:
        """
        Probe a domain over https, then http

        Args:
            domain (str): Domain to probe

        Returns:
            HttpProbeResult: Probe outcome, effective status 0 if unreachable
        """
        for protocol in ('https', 'http'):
            url = f"{protocol}://{domain}"
            start = time.time()
            try:
                status, body = await self.fetch(url)
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                logger.debug(f"HTTP probe {url} failed: {str(e)}")
                continue
            response_time = (time.time() - start) * 1000
            return self.judge(status, body, url, response_time)

        logger.warning(f"HTTP check failed for {domain} - site unreachable")
        return HttpProbeResult(0, 0, reason='Site unreachable')

    def judge(self, status: int, body: str, url: Optional[str] = None,
              response_time: float = 0) -> HttpProbeResult:
        """Apply content heuristics to a fetched page"""
        reason = None
        if is_blank_page(body):
            reason = 'Blank page (WSOD)'
        else:
            indicator = find_wsod_indicator(body)
            if indicator:
                reason = f"WSOD detected: {indicator}"
            elif status == 200 and len(body) < MIN_HEALTHY_BODY_SIZE:
                reason = 'Response too small (likely error page)'

        if reason:
            logger.warning(f"HTTP check for {url}: {status} but {reason}")
            return HttpProbeResult(status, 500, body, url, response_time, reason)

        logger.info(f"HTTP check for {url}: {status}")
        return HttpProbeResult(status, status, body, url, response_time)


class MaintenanceProbe:
    """Detects a stuck .maintenance lock file"""

    def __init__(self, runner, stale_minutes: float = 10):
        self.runner = runner
        self.stale_minutes = stale_minutes

    async def probe(self, server_id: str, site_path: str) -> Dict[str, Any]:
        """
        Returns:
            Dict[str, Any]: 'exists', 'is_stuck' and 'age_minutes' (None when unknown)
        """
        maintenance_file = f"{site_path}/.maintenance"
        result = await self.runner.run(server_id, f"test -f {maintenance_file} && echo \"exists\" || echo \"not found\"")
        if not result.success or 'exists' not in result.output:
            return {'exists': False, 'is_stuck': False, 'age_minutes': None}

        mtime = await self.runner.run(server_id, f"stat -c %Y {maintenance_file}")
        try:
            age_minutes = (time.time() - int(mtime.output.strip())) / 60
        except ValueError:
            logger.warning(f"Could not read age of {maintenance_file}: {mtime.output or mtime.error}")
            return {'exists': True, 'is_stuck': False, 'age_minutes': None}

        return {
            'exists': True,
            'is_stuck': age_minutes > self.stale_minutes,
            'age_minutes': age_minutes
        }


class IntegrityProbe:
    """Verifies WordPress core checksums with wp-cli"""

    def __init__(self, runner):
        self.runner = runner

    async def probe(self, server_id: str, site_path: str) -> Dict[str, Any]:
        """
        Returns:
            Dict[str, Any]: 'success', 'skipped' and 'modified_files'
        """
        which = await self.runner.run(server_id, f"cd {site_path} && which wp 2>/dev/null || echo \"not found\"")
        if not which.success or 'not found' in which.output:
            return {'success': True, 'skipped': True, 'modified_files': []}

        result = await self.runner.wp(server_id, site_path, 'core verify-checksums')
        output = f"{result.output}\n{result.error or ''}".strip()
        if result.error and 'timeout' in result.error.lower():
            logger.warning(f"Core integrity check timed out on {server_id}, skipping")
            return {'success': True, 'skipped': True, 'modified_files': []}

        success = 'Success' in output
        modified = [] if success else [line for line in output.splitlines() if line.strip()]
        return {'success': success, 'skipped': False, 'modified_files': modified}


DB_CREDENTIAL_PATTERNS = {
    'name': re.compile(r"DB_NAME['\"],\s*['\"]([^'\"]+)['\"]"),
    'user': re.compile(r"DB_USER['\"],\s*['\"]([^'\"]+)['\"]"),
    'password': re.compile(r"DB_PASSWORD['\"],\s*['\"]([^'\"]+)['\"]"),
    'host': re.compile(r"DB_HOST['\"],\s*['\"]([^'\"]+)['\"]")
}


def parse_db_credentials(config_text: str) -> Dict[str, str]:
    """Extract database credentials from wp-config.php define() lines"""
    credentials = {}
    for key, pattern in DB_CREDENTIAL_PATTERNS.items():
        match = pattern.search(config_text)
        credentials[key] = match.group(1) if match else ''
    if not credentials['host']:
        credentials['host'] = 'localhost'
    return credentials


class DatabaseProbe:
    """Tests database reachability using the credentials in wp-config.php"""

    def __init__(self, runner):
        self.runner = runner

    async def probe(self, server_id: str, site_path: str) -> Dict[str, Any]:
        """
        Returns:
            Dict[str, Any]: 'success' and 'error'
        """
        config = await self.runner.run(
            server_id,
            f"cat {site_path}/wp-config.php | grep -E \"DB_NAME|DB_USER|DB_PASSWORD|DB_HOST\" | head -4"
        )
        if 'DB_NAME' not in config.output:
            return {'success': False, 'error': 'wp-config.php not found or invalid'}

        credentials = parse_db_credentials(config.output)
        if not credentials['name'] or not credentials['user']:
            return {'success': False, 'error': 'Database credentials not found'}

        password = f"-p'{credentials['password']}'" if credentials['password'] else ''
        test = await self.runner.run(
            server_id,
            f"mysql -h {credentials['host']} -u {credentials['user']} {password} "
            f"-e \"USE {credentials['name']}; SELECT 1;\" 2>&1"
        )
        if not test.output and test.error:
            return {'success': False, 'error': test.error}

        output = test.output.lower()
        success = 'error' not in output and 'denied' not in output and 'unknown database' not in output
        return {
            'success': success,
            'error': None if success else test.output,
            'database': credentials['name']
        }
