"""
Server Checks
Checks that inspect the hosting environment of a site: web server logs,
disk, file permissions, PHP memory and the TLS certificate.
"""

import calendar
import logging
import re
import time
from typing import Optional

from wp_healer.core.models import Target, CheckResult, CheckStatus, CheckPriority, CheckType
from wp_healer.diagnosis.checks.base import BaseCheck

logger = logging.getLogger(__name__)


def parse_size_mb(value: str) -> Optional[int]:
    """
    Parse a PHP size setting

    Args:
        value (str): Setting such as '256M', '1G', '-1'

    Returns:
        Optional[int]: Size in MB, -1 for unlimited, None if unparseable
    """
    value = value.strip().upper()
    if value == '-1':
        return -1
    match = re.fullmatch(r'(\d+)([KMG]?)', value)
    if not match:
        return None
    number, unit = int(match.group(1)), match.group(2)
    if unit == 'G':
        return number * 1024
    if unit == 'K':
        return number // 1024
    if unit == 'M':
        return number
    return number // (1024 * 1024)


def parse_openssl_date(value: str) -> Optional[float]:
    """Parse an openssl notAfter date like 'Jan  1 00:00:00 2025 GMT' to epoch seconds"""
    normalized = ' '.join(value.split())
    try:
        return float(calendar.timegm(time.strptime(normalized, '%b %d %H:%M:%S %Y GMT')))
    except ValueError:
        return None


class ApacheNginxLogsCheck(BaseCheck):
    check_type = CheckType.APACHE_NGINX_LOGS
    _priority = CheckPriority.MEDIUM
    name = 'Web Server Logs'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        apache = await self._output(
            target,
            f"(tail -500 /var/log/apache2/error.log 2>/dev/null || tail -500 /var/log/httpd/error_log 2>/dev/null) "
            f"| grep -i \"{domain}\" || true",
            timeout_ms=90000
        )
        nginx = await self._output(
            target,
            f"tail -500 /var/log/nginx/error.log 2>/dev/null | grep -i \"{domain}\" || true",
            timeout_ms=90000
        )
        error_lines = [
            line for line in (apache + '\n' + nginx).splitlines()
            if 'error' in line.lower() or 'crit' in line.lower()
        ]
        details = {'error_lines': len(error_lines), 'samples': error_lines[:5]}
        if not error_lines:
            return self.passed('No web server errors for this domain', details)
        score = 100 - min(40, len(error_lines) * 2)
        return self.scored(score, f"{len(error_lines)} web server error lines for {domain}", details,
                           ['Review web server error logs'])


class DiskSpaceCheck(BaseCheck):
    check_type = CheckType.DISK_SPACE
    _priority = CheckPriority.HIGH
    name = 'Disk Space'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        output = await self._output(target, f"df -P {path} | tail -1")
        match = re.search(r'(\d+)%', output)
        if not match:
            return self._result(CheckStatus.ERROR, 0, 'Failed to retrieve disk usage information',
                                {'output': output})

        usage = int(match.group(1))
        details = {'usage': usage}
        if usage >= 95:
            return self.fail(f"Disk usage critically high at {usage}%", details,
                             'Free up disk space immediately or expand storage')
        if usage >= 90:
            return self.warn(f"Disk usage high at {usage}%", details,
                             'Free up disk space or expand storage soon', score=50)
        if usage >= 80:
            return self.warn(f"Disk usage at {usage}%", details,
                             'Plan cleanup or expansion', score=75)
        return self.passed(f"Disk usage healthy at {usage}%", details)


class FilePermissionsCheck(BaseCheck):
    check_type = CheckType.FILE_PERMISSIONS
    _priority = CheckPriority.MEDIUM
    name = 'File Permissions'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        output = await self._output(
            target,
            f"stat -c '%a %n' {path}/wp-config.php {path}/wp-content {path}/wp-content/uploads 2>&1"
        )
        issues = []
        modes = {}
        for line in output.splitlines():
            if 'No such file' in line or 'cannot stat' in line:
                issues.append(line.strip())
                continue
            parts = line.split(' ', 1)
            if len(parts) == 2 and parts[0].isdigit():
                modes[parts[1]] = parts[0]

        for name, mode in modes.items():
            if mode.endswith('777'):
                issues.append(f"{name} is world-writable ({mode})")
            elif name.endswith('wp-config.php') and int(mode[-1]) >= 4:
                issues.append(f"{name} is world-readable ({mode})")

        details = {'modes': modes, 'issues': issues}
        if not modes:
            return self.fail('Could not read file permissions', details, 'Verify the site path')
        if issues:
            return self.scored(100 - 20 * len(issues), 'Permission issues found', details,
                               ['Set directories to 755 and files to 644, wp-config.php to 640'])
        return self.passed('File permissions look correct', details)


class MemoryLimitCheck(BaseCheck):
    check_type = CheckType.MEMORY_LIMIT
    _priority = CheckPriority.MEDIUM
    name = 'PHP Memory Limit'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        output = await self._output(
            target,
            f"cd {path} && php -r \"echo ini_get('memory_limit');\" 2>/dev/null || echo \"Unknown\""
        )
        limit = output.strip()
        size_mb = parse_size_mb(limit)
        details = {'limit': limit, 'limit_mb': size_mb}

        if size_mb is None:
            return self.warn('Could not determine PHP memory limit', details, score=60)
        if size_mb == -1 or size_mb >= 128:
            return self.passed(f"PHP memory limit {limit}", details)
        if size_mb >= 64:
            return self.warn(f"PHP memory limit {limit} is low", details,
                             'Raise WP_MEMORY_LIMIT to 256M', score=60)
        return self.fail(f"PHP memory limit {limit} is too low", details,
                         'Raise WP_MEMORY_LIMIT to 256M', score=30)


class SslCertificateCheck(BaseCheck):
    check_type = CheckType.SSL_CERTIFICATE
    _priority = CheckPriority.HIGH
    name = 'SSL Certificate'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        output = await self._output(
            target,
            f"echo | openssl s_client -servername {domain} -connect {domain}:443 2>/dev/null "
            f"| openssl x509 -noout -enddate 2>/dev/null || echo \"CERT_NOT_FOUND\""
        )
        match = re.search(r'notAfter=(.+)', output)
        if 'CERT_NOT_FOUND' in output or not match:
            return self.fail('No SSL certificate found', {'output': output.strip()},
                             'Install an SSL certificate')

        expires_at = parse_openssl_date(match.group(1))
        if expires_at is None:
            return self.warn('Certificate expiry date is unknown', {'not_after': match.group(1), 'expires_in': 'unknown'},
                             'Inspect the certificate manually', score=50)

        days = int((expires_at - time.time()) // 86400)
        details = {'not_after': match.group(1).strip(), 'expires_in': days}
        if days < 0:
            return self.fail('Certificate expired', details, 'Renew the SSL certificate')
        if days < 7:
            return self.fail(f"Certificate expires in {days} days", details,
                             'Renew the SSL certificate now', score=30)
        if days < 30:
            return self.warn(f"Certificate expires in {days} days", details,
                             'Renew the SSL certificate soon', score=70)
        return self.passed(f"Certificate valid for {days} days", details)
