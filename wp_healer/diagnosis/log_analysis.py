"""
Log Analysis
Collects recent PHP and web server log lines for a site and classifies
structured error types with their culprit plugin or theme.
"""

import asyncio
import logging
import re
from typing import Dict, Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Classification order matters: theme and plugin faults are more specific
# than a generic syntax error.
ERROR_PATTERNS: List[Tuple[str, 're.Pattern']] = [
    ('THEME_FAULT', re.compile(r'(?:PHP Fatal error|PHP Parse error|PHP Warning):.* in .*/wp-content/themes/([^/]+)/')),
    ('PLUGIN_FAULT', re.compile(r'(?:PHP Fatal error|PHP Parse error|PHP Warning):.* in .*/wp-content/plugins/([^/]+)/')),
    ('SYNTAX_ERROR', re.compile(r'PHP Parse error: syntax error')),
    ('MEMORY_EXHAUSTION', re.compile(r'Allowed memory size of \d+ bytes exhausted')),
    ('DB_CONNECTION', re.compile(r'Error establishing a database connection')),
    ('DB_ACCESS_DENIED', re.compile(r'Access denied for user'))
]

SYNTAX_FILE_PATTERN = re.compile(r'in (.*?) on line')

WP_LOG_LINE = re.compile(r'\[(.*?)\] (PHP .*?): (.*)')
PHP_LOG_LINE = re.compile(r'\[(.*?)\] (.*)')
NGINX_LOG_LINE = re.compile(r'(\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2}) \[(.*?)\] (.*)')
APACHE_LOG_LINE = re.compile(r'\[(.*?)\] \[(.*?)\] (.*)')

SYSTEM_PHP_LOGS = [
    '/var/log/php-fpm/error.log',
    '/var/log/php/error.log',
    '/var/log/php7.4-fpm.log',
    '/var/log/php8.0-fpm.log',
    '/var/log/php8.1-fpm.log',
    '/var/log/php8.2-fpm.log'
]

APACHE_LOGS = [
    '/var/log/apache2/error.log',
    '/var/log/httpd/error_log'
]

NGINX_LOG = '/var/log/nginx/error.log'


class ParsedError:
    """One structured error line"""

    def __init__(self, timestamp: str, level: str, message: str,
                 error_type: Optional[str] = None, culprit: Optional[str] = None):
        self.timestamp = timestamp
        self.level = level
        self.message = message
        self.error_type = error_type
        self.culprit = culprit

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'level': self.level,
            'message': self.message,
            'type': self.error_type,
            'culprit': self.culprit
        }


class LogAnalysisResult:
    """Errors parsed from one log file"""

    def __init__(self, log_type: str, log_path: str, errors: List[ParsedError]):
        self.log_type = log_type
        self.log_path = log_path
        self.errors = errors

    @property
    def total_errors(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'log_type': self.log_type,
            'log_path': self.log_path,
            'errors': [e.to_dict() for e in self.errors],
            'total_errors': self.total_errors
        }


def detect_error_type(message: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Classify an error message

    Args:
        message (str): Log message, including its PHP level prefix when present

    Returns:
        Tuple[Optional[str], Optional[str]]: Error type and culprit
    """
    for error_type, pattern in ERROR_PATTERNS:
        match = pattern.search(message)
        if not match:
            continue
        if error_type in ('THEME_FAULT', 'PLUGIN_FAULT'):
            return error_type, match.group(1)
        if error_type == 'SYNTAX_ERROR':
            file_match = SYNTAX_FILE_PATTERN.search(message)
            return error_type, file_match.group(1) if file_match else None
        return error_type, None
    return None, None


def parse_wordpress_log(content: str) -> List[ParsedError]:
    """Parse wp-content/debug.log lines: [timestamp] PHP <level>: <message>"""
    errors = []
    for line in content.splitlines():
        if not line.strip():
            continue
        match = WP_LOG_LINE.search(line)
        if not match:
            continue
        timestamp, level, message = match.groups()
        error_type, culprit = detect_error_type(f"{level}: {message}")
        errors.append(ParsedError(timestamp, level, message, error_type, culprit))
    return errors


def parse_php_log(content: str) -> List[ParsedError]:
    """Parse PHP error_log lines: [timestamp] <message>"""
    errors = []
    for line in content.splitlines():
        if not line.strip():
            continue
        match = PHP_LOG_LINE.search(line)
        if not match:
            continue
        timestamp, message = match.groups()
        error_type, culprit = detect_error_type(message)
        errors.append(ParsedError(timestamp, 'ERROR', message, error_type, culprit))
    return errors


def parse_nginx_log(content: str) -> List[ParsedError]:
    errors = []
    for line in content.splitlines():
        match = NGINX_LOG_LINE.search(line)
        if match:
            timestamp, level, message = match.groups()
            error_type, culprit = detect_error_type(message)
            errors.append(ParsedError(timestamp, level.upper(), message, error_type, culprit))
    return errors


def parse_apache_log(content: str) -> List[ParsedError]:
    errors = []
    for line in content.splitlines():
        match = APACHE_LOG_LINE.search(line)
        if match:
            timestamp, level, message = match.groups()
            error_type, culprit = detect_error_type(message)
            errors.append(ParsedError(timestamp, level.upper(), message, error_type, culprit))
    return errors


def _has_content(output: str) -> bool:
    return bool(output and output.strip()) and 'No such file' not in output


class LogAnalyzer:
    """Reads the tail of a site's logs over the command runner"""

    def __init__(self, runner, tail_lines: int = 100):
        """
        Args:
            runner (CommandRunner): Remote command runner
            tail_lines (int): Lines read from the end of each log
        """
        self.runner = runner
        self.tail_lines = tail_lines

    async def analyze(self, server_id: str, site_path: str, domain: Optional[str] = None,
                      tail_lines: Optional[int] = None) -> List[LogAnalysisResult]:
        """
        Analyze all logs of a site

        Args:
            server_id (str): Remote execution handle
            site_path (str): WordPress root
            domain (str, optional): Domain used to filter web server logs
            tail_lines (int, optional): Override for the number of lines read

        Returns:
            List[LogAnalysisResult]: One entry per log that yielded content
        """
        lines = tail_lines or self.tail_lines
        logger.info(f"Analyzing logs for site at {site_path}")

        results = await asyncio.gather(
            self._analyze_debug_log(server_id, site_path, lines),
            self._analyze_php_log(server_id, site_path, lines),
            self._analyze_web_server_log(server_id, site_path, domain, lines)
        )
        return [r for r in results if r is not None]

    async def _read(self, server_id: str, command: str) -> str:
        result = await self.runner.run(server_id, command)
        return result.output if result.success else ''

    async def _exists(self, server_id: str, path: str) -> bool:
        output = await self._read(server_id, f"test -f {path} && echo EXISTS || echo MISSING")
        return 'EXISTS' in output

    async def _analyze_debug_log(self, server_id: str, site_path: str, lines: int) -> Optional[LogAnalysisResult]:
        log_path = f"{site_path}/wp-content/debug.log"
        if not await self._exists(server_id, log_path):
            return None
        content = await self._read(server_id, f"tail -n {lines} {log_path}")
        return LogAnalysisResult('WordPress Debug Log', log_path, parse_wordpress_log(content))

    async def _analyze_php_log(self, server_id: str, site_path: str, lines: int) -> Optional[LogAnalysisResult]:
        for log_path in (f"{site_path}/error_log", f"{site_path}/wp-admin/error_log", f"{site_path}/../error_log"):
            if not await self._exists(server_id, log_path):
                continue
            content = await self._read(server_id, f"tail -n {lines} {log_path}")
            if not _has_content(content):
                continue
            errors = parse_php_log(content)
            if errors:
                return LogAnalysisResult('PHP Error Log (Site-Specific)', log_path, errors)

        for log_path in SYSTEM_PHP_LOGS:
            if not await self._exists(server_id, log_path):
                continue
            content = await self._read(server_id, f"tail -n {lines} {log_path} | grep \"{site_path}\"")
            if not _has_content(content):
                continue
            errors = parse_php_log(content)
            if errors:
                return LogAnalysisResult('PHP Error Log (System)', log_path, errors)

        return None

    async def _analyze_web_server_log(self, server_id: str, site_path: str, domain: Optional[str],
                                      lines: int) -> Optional[LogAnalysisResult]:
        filter_pattern = domain or site_path

        if await self._exists(server_id, NGINX_LOG):
            content = await self._read(server_id, f"tail -n {lines} {NGINX_LOG} | grep \"{filter_pattern}\"")
            if _has_content(content):
                return LogAnalysisResult('Nginx Error Log', NGINX_LOG, parse_nginx_log(content))

        for log_path in APACHE_LOGS:
            if not await self._exists(server_id, log_path):
                continue
            content = await self._read(server_id, f"tail -n {lines} {log_path} | grep \"{filter_pattern}\"")
            if _has_content(content):
                return LogAnalysisResult('Apache Error Log', log_path, parse_apache_log(content))

        return None


def all_errors(results: List[LogAnalysisResult]) -> List[ParsedError]:
    """Flatten errors of several log results, preserving order"""
    return [error for result in results for error in result.errors]
