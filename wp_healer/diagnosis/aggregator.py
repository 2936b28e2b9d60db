"""
Diagnosis Aggregator
Runs the scored checks together with the structural signal collectors,
computes the weighted health score and derives a single causal diagnosis.
"""

import asyncio
import logging
import re
import time
from collections import Counter
from typing import Dict, Any, List, Optional

import numpy as np

from wp_healer.core.models import (
    Target, CheckResult, CheckStatus, CheckPriority, CheckType,
    DiagnosisRecord, DiagnosisProfile, DiagnosisType, HealthStatus
)
from wp_healer.diagnosis.checks.runner import CheckRunner
from wp_healer.diagnosis.log_analysis import LogAnalyzer, LogAnalysisResult, all_errors
from wp_healer.diagnosis.probes import (
    HttpProbe, HttpProbeResult, MaintenanceProbe, IntegrityProbe, DatabaseProbe
)
from wp_healer.diagnosis.profiles import ProfileConfig

logger = logging.getLogger(__name__)

PRIORITY_WEIGHTS = {
    CheckPriority.CRITICAL: 3,
    CheckPriority.HIGH: 2,
    CheckPriority.MEDIUM: 1,
    CheckPriority.LOW: 0.5
}

CATEGORY_MAP = {
    CheckType.CORE_INTEGRITY: 'security',
    CheckType.SSL_CERTIFICATE: 'security',
    CheckType.FILE_PERMISSIONS: 'security',
    CheckType.WP_CONFIG: 'security',
    CheckType.MEMORY_LIMIT: 'performance',
    CheckType.DISK_SPACE: 'performance',
    CheckType.PHP_ERRORS: 'performance',
    CheckType.UPDATE_STATUS: 'maintenance',
    CheckType.BACKUP_STATUS: 'maintenance',
    CheckType.PLUGIN_STATUS: 'maintenance',
    CheckType.THEME_STATUS: 'maintenance',
    CheckType.WP_VERSION: 'maintenance',
    CheckType.HTACCESS: 'seo',
    CheckType.HTTP_STATUS: 'availability',
    CheckType.MAINTENANCE_MODE: 'availability',
    CheckType.DATABASE_CONNECTION: 'availability',
    CheckType.APACHE_NGINX_LOGS: 'availability'
}

CATEGORIES = ['security', 'performance', 'maintenance', 'seo', 'availability']


def calculate_health_score(results: List[CheckResult]) -> int:
    """
    Weighted average of check scores

    Args:
        results (List[CheckResult]): Check results, SKIPPED results carry no verdict and are ignored

    Returns:
        int: Score rounded and clamped to 0-100, 100 when nothing was scored
    """
    scored = [r for r in results if r.status != CheckStatus.SKIPPED]
    if not scored:
        return 100
    score = np.average(
        [r.score for r in scored],
        weights=[PRIORITY_WEIGHTS[r.priority] for r in scored]
    )
    return int(max(0, min(100, round(float(score)))))


def calculate_category_scores(results: List[CheckResult]) -> Dict[str, int]:
    """Average score per category, 100 for categories without results"""
    buckets: Dict[str, List[int]] = {category: [] for category in CATEGORIES}
    for result in results:
        category = CATEGORY_MAP.get(result.check_type)
        if category and result.status != CheckStatus.SKIPPED:
            buckets[category].append(result.score)
    return {
        category: int(round(float(np.mean(scores)))) if scores else 100
        for category, scores in buckets.items()
    }


def count_issues(results: List[CheckResult]) -> Dict[str, int]:
    return {
        'issues': sum(1 for r in results if r.status in (CheckStatus.FAIL, CheckStatus.WARNING)),
        'critical': sum(1 for r in results if r.status == CheckStatus.FAIL and r.priority == CheckPriority.CRITICAL),
        'warnings': sum(1 for r in results if r.status == CheckStatus.WARNING)
    }


def health_status_for(diagnosis_type: DiagnosisType, score: int) -> HealthStatus:
    """Map a diagnosis outcome to the site's health status"""
    if diagnosis_type == DiagnosisType.HEALTHY:
        return HealthStatus.HEALTHY
    if diagnosis_type == DiagnosisType.MAINTENANCE:
        return HealthStatus.MAINTENANCE
    if score >= 80:
        return HealthStatus.HEALTHY
    if score >= 40:
        return HealthStatus.DEGRADED
    return HealthStatus.DOWN


THEME_ERROR_LOCATION = re.compile(r'in (.*?) on line (\d+)')


def theme_error_details(message: str) -> Dict[str, Any]:
    """Location details of a theme error, used to report syntax errors precisely"""
    match = THEME_ERROR_LOCATION.search(message)
    return {
        'is_syntax_error': 'syntax error' in message.lower() or 'parse error' in message.lower(),
        'file_path': match.group(1) if match else None,
        'line_number': int(match.group(2)) if match else None
    }


class CausalDiagnosis:
    """Primary failure type with its confidence and template remedy"""

    def __init__(self,
                 diagnosis_type: DiagnosisType,
                 confidence: float,
                 error_type: str,
                 error_message: str,
                 suggested_action: str,
                 suggested_commands: Optional[List[str]] = None,
                 culprit: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.diagnosis_type = diagnosis_type
        self.confidence = confidence
        self.error_type = error_type
        self.error_message = error_message
        self.suggested_action = suggested_action
        self.suggested_commands = suggested_commands or []
        self.culprit = culprit
        self.details = details or {}


class DiagnosisAggregator:
    """
    DiagnosisAggregator handles:
    - Parallel execution of scored checks and structural probes
    - Weighted health score, issue counts and category scores
    - Causal diagnosis with fixed precedence
    """

    def __init__(self,
                 check_runner: CheckRunner,
                 log_analyzer: LogAnalyzer,
                 http_probe: HttpProbe,
                 maintenance_probe: MaintenanceProbe,
                 integrity_probe: IntegrityProbe,
                 database_probe: DatabaseProbe,
                 fallback_theme: str = 'twentytwentyfour'):
        """
        Initialize the aggregator

        Args:
            check_runner (CheckRunner): Runner for scored checks
            log_analyzer (LogAnalyzer): Log error collector
            http_probe (HttpProbe): HTTP content probe
            maintenance_probe (MaintenanceProbe): Maintenance lock probe
            integrity_probe (IntegrityProbe): Core checksum probe
            database_probe (DatabaseProbe): Database reachability probe
            fallback_theme (str): Theme suggested when a theme is at fault
        """
        self.check_runner = check_runner
        self.log_analyzer = log_analyzer
        self.http_probe = http_probe
        self.maintenance_probe = maintenance_probe
        self.integrity_probe = integrity_probe
        self.database_probe = database_probe
        self.fallback_theme = fallback_theme

    async def diagnose(self,
                       target: Target,
                       path: str,
                       domain: str,
                       profile: DiagnosisProfile,
                       profile_config: ProfileConfig) -> DiagnosisRecord:
        """
        Diagnose a site

        Args:
            target (Target): Site to diagnose
            path (str): Filesystem path of the (sub)site
            domain (str): Domain of the (sub)site
            profile (DiagnosisProfile): Profile used
            profile_config (ProfileConfig): Resolved profile settings

        Returns:
            DiagnosisRecord: Aggregated outcome, UNKNOWN when no cause can be determined
        """
        start = time.time()
        logger.info(f"Diagnosing {domain} ({path}) with profile {profile.value}")

        results = await asyncio.gather(
            self.check_runner.run(target, path, domain, profile_config.checks,
                                  profile_config.timeout, profile_config.parallel),
            self._collect('logs', self._analyze_logs(target, path, domain, profile_config.log_depth), []),
            self._collect('http', self.http_probe.probe(domain),
                          HttpProbeResult(0, 0, reason='HTTP probe failed')),
            self._collect('maintenance', self.maintenance_probe.probe(target.server_id, path),
                          {'exists': False, 'is_stuck': False, 'age_minutes': None}),
            self._collect('integrity', self.integrity_probe.probe(target.server_id, path),
                          {'success': True, 'skipped': True, 'modified_files': []}),
            self._collect('database', self.database_probe.probe(target.server_id, path),
                          {'success': True, 'error': None, 'probe_failed': True})
        )
        check_results, log_results, http, maintenance, integrity, database = results

        causal = self.determine_cause(log_results, http, maintenance, integrity, database)
        score = calculate_health_score(check_results)
        counts = count_issues(check_results)

        record = DiagnosisRecord(
            target.id,
            profile,
            checks_run=[c.value for c in profile_config.checks],
            health_score=score,
            issues_found=counts['issues'],
            critical_issues=counts['critical'],
            warning_issues=counts['warnings'],
            diagnosis_type=causal.diagnosis_type,
            confidence=causal.confidence,
            error_type=causal.error_type,
            culprit=causal.culprit,
            error_message=causal.error_message,
            suggested_action=causal.suggested_action,
            suggested_commands=causal.suggested_commands,
            check_results=check_results,
            category_scores=calculate_category_scores(check_results),
            log_files_checked=[r.log_path for r in log_results],
            details={
                'logs': [r.to_dict() for r in log_results],
                'http': http.to_dict(),
                'maintenance': maintenance,
                'integrity': integrity,
                'database': database,
                **causal.details
            },
            http_status=http.effective_status,
            response_time=http.response_time,
            duration=(time.time() - start) * 1000,
            domain=domain,
            path=path
        )

        logger.info(
            f"Diagnosis for {domain}: {causal.diagnosis_type.value} "
            f"(confidence {causal.confidence:.2f}, health score {score})"
        )
        return record

    async def _analyze_logs(self, target: Target, path: str, domain: str,
                            log_depth: int) -> List[LogAnalysisResult]:
        if log_depth <= 0:
            return []
        return await self.log_analyzer.analyze(target.server_id, path, domain, log_depth)

    async def _collect(self, name: str, coro, default):
        """Run a structural probe, substituting a neutral default if it fails"""
        try:
            return await coro
        except Exception as e:
            logger.error(f"Structural probe {name} failed: {str(e)}")
            return default

    def determine_cause(self,
                        log_results: List[LogAnalysisResult],
                        http: HttpProbeResult,
                        maintenance: Dict[str, Any],
                        integrity: Dict[str, Any],
                        database: Dict[str, Any]) -> CausalDiagnosis:
        """
        Derive the primary failure from structural signals

        Precedence: stuck maintenance, unreachable database, checksum
        mismatch, healthy, most frequent classified log error, unknown.
        """
        if maintenance.get('is_stuck'):
            return CausalDiagnosis(
                DiagnosisType.MAINTENANCE, 1.0, 'STUCK_MAINTENANCE',
                f"Site stuck in maintenance mode for {round(maintenance.get('age_minutes') or 0)} minutes",
                'Remove stuck .maintenance file',
                ['rm -f .maintenance']
            )

        if not database.get('success', True):
            return CausalDiagnosis(
                DiagnosisType.DB_ERROR, 0.85, 'DB_CONNECTION',
                database.get('error') or 'Database unreachable',
                'Check and repair database',
                ['wp db check', 'wp db repair']
            )

        if not integrity.get('success', True):
            return CausalDiagnosis(
                DiagnosisType.INTEGRITY, 0.90, 'CORE_INTEGRITY',
                'WordPress core files do not match checksums',
                'Reinstall WordPress core files',
                ['wp core download --force --skip-content']
            )

        errors = all_errors(log_results)
        if not errors and http.effective_status == 200:
            return CausalDiagnosis(
                DiagnosisType.HEALTHY, 1.0, 'NONE', 'No errors detected',
                'Site is healthy - no action needed'
            )

        counts = Counter(e.error_type for e in errors if e.error_type)
        if counts:
            # Counter keeps first-seen order, so max() breaks ties by first occurrence
            primary_type = max(counts, key=lambda t: counts[t])
            primary = next(e for e in errors if e.error_type == primary_type)
            return self._cause_from_error(primary_type, primary)

        return CausalDiagnosis(
            DiagnosisType.UNKNOWN, 0.0, 'UNKNOWN',
            f"Site returning HTTP {http.effective_status} but no clear errors in logs",
            'Unable to determine root cause - manual investigation required'
        )

    def _cause_from_error(self, error_type: str, error) -> CausalDiagnosis:
        if error_type == 'PLUGIN_FAULT':
            return CausalDiagnosis(
                DiagnosisType.WSOD, 0.95, error_type, error.message,
                f"Deactivate faulty plugin: {error.culprit}",
                [f"wp plugin deactivate {error.culprit}"],
                culprit=error.culprit
            )
        if error_type == 'THEME_FAULT':
            theme = error.culprit or 'unknown'
            return CausalDiagnosis(
                DiagnosisType.WSOD, 0.95, error_type, error.message,
                f"Theme {theme} is causing errors - disable it and switch to a default theme",
                [
                    f"mv wp-content/themes/{theme} wp-content/themes/{theme}.disabled",
                    f"wp theme activate {self.fallback_theme}"
                ],
                culprit=theme,
                details=theme_error_details(error.message)
            )
        if error_type == 'MEMORY_EXHAUSTION':
            return CausalDiagnosis(
                DiagnosisType.MEMORY_EXHAUSTION, 0.90, error_type, error.message,
                'Increase PHP memory limit to 256M',
                ['wp config set WP_MEMORY_LIMIT 256M --raw', 'wp config set WP_MAX_MEMORY_LIMIT 512M --raw']
            )
        if error_type in ('DB_CONNECTION', 'DB_ACCESS_DENIED'):
            return CausalDiagnosis(
                DiagnosisType.DB_ERROR, 0.85, error_type, error.message,
                'Check and repair database',
                ['wp db check', 'wp db repair']
            )
        return CausalDiagnosis(
            DiagnosisType.SYNTAX_ERROR, 0.80, 'SYNTAX_ERROR', error.message,
            'Syntax error detected - manual intervention required',
            culprit=error.culprit
        )
