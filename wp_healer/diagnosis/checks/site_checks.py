"""
Site Checks
Checks that inspect a WordPress install: HTTP front page, maintenance lock,
database, core, configuration, plugins, themes, updates and backups.
"""

import json
import logging
import re
import time
from typing import Dict, Any, List, Optional, Tuple

from wp_healer.core.models import Target, CheckResult, CheckPriority, CheckType
from wp_healer.diagnosis.checks.base import BaseCheck
from wp_healer.diagnosis.probes import HttpProbe, MaintenanceProbe, IntegrityProbe, DatabaseProbe

logger = logging.getLogger(__name__)


def _parse_json_list(output: str) -> Optional[List[Dict[str, Any]]]:
    try:
        data = json.loads(output)
    except ValueError:
        return None
    return data if isinstance(data, list) else None


class HttpStatusCheck(BaseCheck):
    check_type = CheckType.HTTP_STATUS
    _priority = CheckPriority.CRITICAL
    name = 'HTTP Status'

    def __init__(self, runner, http_probe: HttpProbe):
        super().__init__(runner)
        self.http_probe = http_probe

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        result = await self.http_probe.probe(domain)
        details = result.to_dict()

        if result.status == 0:
            return self.fail('Site unreachable', details, 'Check web server and DNS configuration')
        if result.effective_status == 200:
            return self.passed(f"Site responded with {result.status} ({result.size} bytes)", details)
        if result.reason:
            return self.fail(f"Status {result.status} but {result.reason}", details,
                             'Inspect PHP error logs for the failing component')
        if result.effective_status >= 500:
            return self.fail(f"Server error {result.status}", details, 'Inspect PHP error logs')
        return self.fail(f"Unexpected status {result.status}", details,
                         'Check redirects and access rules', score=20)


class MaintenanceModeCheck(BaseCheck):
    check_type = CheckType.MAINTENANCE_MODE
    _priority = CheckPriority.HIGH
    name = 'Maintenance Mode'

    def __init__(self, runner, stale_minutes: float = 10):
        super().__init__(runner)
        self.probe = MaintenanceProbe(runner, stale_minutes)

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        state = await self.probe.probe(target.server_id, path)
        if not state['exists']:
            return self.passed('Site is not in maintenance mode', state)
        if state['age_minutes'] is None:
            return self.warn('Maintenance file present, age unknown', state,
                             'Check whether an update is still running', score=50)
        if state['is_stuck']:
            return self.fail(f"Maintenance mode stuck for {int(state['age_minutes'])} minutes", state,
                             'Remove the stale .maintenance file')
        return self.warn('Update in progress (maintenance mode active)', state, score=70)


class DatabaseConnectionCheck(BaseCheck):
    check_type = CheckType.DATABASE_CONNECTION
    _priority = CheckPriority.CRITICAL
    name = 'Database Connection'

    def __init__(self, runner):
        super().__init__(runner)
        self.probe = DatabaseProbe(runner)

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        state = await self.probe.probe(target.server_id, path)
        if state['success']:
            return self.passed(f"Connected to database {state.get('database', '')}".strip(), state)
        return self.fail(f"Database connection failed: {state['error']}", state,
                         'Verify database credentials and that the database server is running')


class WpVersionCheck(BaseCheck):
    check_type = CheckType.WP_VERSION
    _priority = CheckPriority.LOW
    name = 'WordPress Version'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        result = await self.runner.wp(target.server_id, path, 'core version')
        match = re.search(r'\d+\.\d+(?:\.\d+)?', result.output or '')
        if not match:
            return self.warn('Could not determine WordPress version', {'output': result.output or result.error},
                             'Verify wp-cli is installed', score=50)
        return self.passed(f"WordPress {match.group(0)}", {'version': match.group(0)})


class CoreIntegrityCheck(BaseCheck):
    check_type = CheckType.CORE_INTEGRITY
    _priority = CheckPriority.CRITICAL
    name = 'Core Integrity'

    def __init__(self, runner):
        super().__init__(runner)
        self.probe = IntegrityProbe(runner)

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        state = await self.probe.probe(target.server_id, path)
        if state['skipped']:
            return self.skipped('wp-cli not available, core integrity not verified', state)
        if state['success']:
            return self.passed('Core files match checksums', state)
        return self.fail(f"Core checksum mismatch ({len(state['modified_files'])} findings)", state,
                         'Reinstall WordPress core files')


class PhpErrorsCheck(BaseCheck):
    check_type = CheckType.PHP_ERRORS
    _priority = CheckPriority.HIGH
    name = 'PHP Errors'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        content = await self._output(
            target,
            f"tail -100 {path}/wp-content/debug.log 2>/dev/null; tail -100 {path}/error_log 2>/dev/null"
        )
        lines = [line for line in content.splitlines() if line.strip()]
        fatal = [l for l in lines if 'Fatal error' in l or 'Parse error' in l]
        warnings = [l for l in lines if 'Warning' in l]

        score = 100 - min(60, len(fatal) * 20) - min(20, len(warnings) * 2)
        details = {
            'fatal_errors': len(fatal),
            'warnings': len(warnings),
            'samples': (fatal + warnings)[:5]
        }
        if not fatal and not warnings:
            return self.passed('No recent PHP errors', details)

        recommendations = []
        if fatal:
            recommendations.append('Fix fatal errors reported in the PHP error log')
        if warnings:
            recommendations.append('Review PHP warnings')
        return self.scored(score, f"{len(fatal)} fatal errors, {len(warnings)} warnings in recent logs",
                           details, recommendations)


class WpConfigCheck(BaseCheck):
    check_type = CheckType.WP_CONFIG
    _priority = CheckPriority.HIGH
    name = 'wp-config.php'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        content = await self._output(
            target,
            f"cat {path}/wp-config.php 2>/dev/null | grep -E \"WP_DEBUG|DB_NAME|DB_USER\" | head -10"
        )
        valid = 'DB_NAME' in content and 'DB_USER' in content
        debug_enabled = bool(re.search(r"WP_DEBUG['\"]\s*,\s*true", content))
        details = {'valid': valid, 'debug_enabled': debug_enabled}

        if not valid:
            return self.fail('wp-config.php missing or lacks database settings', details,
                             'Restore wp-config.php from backup')
        if debug_enabled:
            return self.warn('WP_DEBUG is enabled', details, 'Disable WP_DEBUG on production sites', score=70)
        return self.passed('wp-config.php is valid', details)


class HtaccessCheck(BaseCheck):
    check_type = CheckType.HTACCESS
    _priority = CheckPriority.LOW
    name = '.htaccess'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        content = await self._output(
            target,
            f"test -f {path}/.htaccess && head -50 {path}/.htaccess || echo \"File not found\""
        )
        if 'File not found' in content:
            return self.passed('No .htaccess file', {'exists': False})
        if 'syntax error' in content.lower():
            return self.fail('.htaccess contains errors', {'exists': True},
                             'Regenerate .htaccess with wp rewrite flush')
        has_wp_block = '# BEGIN WordPress' in content
        if not has_wp_block:
            return self.warn('.htaccess has no WordPress rewrite block', {'exists': True},
                             'Regenerate permalinks', score=80)
        return self.passed('.htaccess is valid', {'exists': True})


class PluginStatusCheck(BaseCheck):
    check_type = CheckType.PLUGIN_STATUS
    _priority = CheckPriority.MEDIUM
    name = 'Plugin Status'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        result = await self.runner.wp(target.server_id, path, 'plugin list --format=json')
        plugins = _parse_json_list(result.output)
        if plugins is None:
            return self.warn('Could not list plugins', {'output': result.output or result.error}, score=50)

        active = [p['name'] for p in plugins if p.get('status') == 'active']
        inactive = [p['name'] for p in plugins if p.get('status') == 'inactive']
        updates = [p['name'] for p in plugins if p.get('update') == 'available']

        score = 100 - min(20, len(updates) * 3) - (10 if len(inactive) > 5 else 0)
        recommendations = []
        if updates:
            recommendations.append(f"Update plugins: {', '.join(updates[:5])}")
        if len(inactive) > 5:
            recommendations.append('Remove unused inactive plugins')
        return self.scored(score, f"{len(active)} active, {len(inactive)} inactive, {len(updates)} with updates",
                           {'active': active, 'inactive': inactive, 'updates': updates}, recommendations)


class ThemeStatusCheck(BaseCheck):
    check_type = CheckType.THEME_STATUS
    _priority = CheckPriority.MEDIUM
    name = 'Theme Status'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        result = await self.runner.wp(target.server_id, path, 'theme list --format=json')
        themes = _parse_json_list(result.output)
        if themes is None:
            return self.warn('Could not list themes', {'output': result.output or result.error}, score=50)

        active = [t['name'] for t in themes if t.get('status') == 'active']
        updates = [t['name'] for t in themes if t.get('update') == 'available']
        if not active:
            return self.fail('No active theme', {'themes': [t.get('name') for t in themes]},
                             'Activate a default theme')

        score = 100 - min(15, len(updates) * 5)
        return self.scored(score, f"Active theme {active[0]}, {len(updates)} with updates",
                           {'active': active[0], 'updates': updates},
                           [f"Update themes: {', '.join(updates)}"] if updates else [])


class UpdateStatusCheck(BaseCheck):
    check_type = CheckType.UPDATE_STATUS
    _priority = CheckPriority.MEDIUM
    name = 'Update Status'

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        core = await self.runner.wp(target.server_id, path, 'core check-update --format=json')
        plugins = await self.runner.wp(target.server_id, path, 'plugin list --update=available --format=count')
        themes = await self.runner.wp(target.server_id, path, 'theme list --update=available --format=count')

        core_updates = _parse_json_list(core.output) or []
        plugin_count = int(plugins.output.strip()) if plugins.output.strip().isdigit() else 0
        theme_count = int(themes.output.strip()) if themes.output.strip().isdigit() else 0

        score = 100
        recommendations = []
        if core_updates:
            score -= 15
            recommendations.append(f"Update WordPress core to {core_updates[0].get('version', 'latest')}")
        if plugin_count:
            score -= min(20, plugin_count * 3)
            recommendations.append(f"Update {plugin_count} plugins")
        if theme_count:
            score -= min(15, theme_count * 5)
            recommendations.append(f"Update {theme_count} themes")

        details = {
            'core_updates': core_updates,
            'plugin_updates': plugin_count,
            'theme_updates': theme_count
        }
        if score == 100:
            return self.passed('Everything is up to date', details)
        return self.scored(score, 'Updates available', details, recommendations)


class BackupStatusCheck(BaseCheck):
    """
    Scores the age of the newest backup.

    A backup whose timestamp cannot be read is reported as its own
    'unknown' signal rather than being treated as fresh or as missing.
    """

    check_type = CheckType.BACKUP_STATUS
    _priority = CheckPriority.MEDIUM
    name = 'Backup Status'

    UNKNOWN_AGE_SCORE = 50

    def __init__(self, runner, store=None, backup_root: str = '/var/backups/healer'):
        super().__init__(runner)
        self.store = store
        self.backup_root = backup_root

    async def _last_backup(self, target: Target) -> Tuple[bool, Optional[float]]:
        """Return whether a backup exists and its timestamp, None if unreadable"""
        if self.store is not None:
            backups = self.store.query(
                'backups',
                lambda d: d['site_id'] == target.id and d.get('status') == 'COMPLETED',
                sort_key=lambda d: d.get('created_at') or 0,
                reverse=True,
                limit=1
            )
            if backups:
                created_at = backups[0].created_at
                return True, created_at if isinstance(created_at, (int, float)) and created_at > 0 else None

        listing = await self._output(
            target,
            f"ls -t {self.backup_root}/{target.id}/ 2>/dev/null | head -1"
        )
        newest = listing.strip()
        if not newest:
            return False, None

        mtime = await self._output(target, f"stat -c %Y {self.backup_root}/{target.id}/{newest}")
        try:
            return True, float(mtime.strip())
        except ValueError:
            return True, None

    async def _execute(self, target: Target, path: str, domain: str) -> CheckResult:
        exists, timestamp = await self._last_backup(target)
        if not exists:
            return self.scored(60, 'No backups found', {'exists': False, 'age': None},
                               ['Create an initial backup', 'Set up an automated backup schedule'])

        if timestamp is None:
            return self.warn('Last backup age is unknown', {'exists': True, 'age': 'unknown'},
                             'Verify backup records and archive timestamps', score=self.UNKNOWN_AGE_SCORE)

        days = int((time.time() - timestamp) // 86400)
        details = {'exists': True, 'age': days, 'last_backup_at': timestamp}
        if days > 7:
            return self.scored(70, f"Last backup was {days} days ago", details, ['Create a fresh backup'])
        if days > 3:
            return self.scored(85, f"Last backup was {days} days ago", details,
                               ['Consider more frequent backups'])
        return self.passed(f"Last backup {days} days ago", details)
