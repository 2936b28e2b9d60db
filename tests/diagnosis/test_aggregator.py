"""Tests for health scoring and causal diagnosis."""

from __future__ import annotations

import pytest

from wp_healer.core.models import (
    CheckPriority,
    CheckResult,
    CheckStatus,
    CheckType,
    DiagnosisProfile,
    DiagnosisType,
    HealthStatus,
)
from wp_healer.diagnosis.aggregator import (
    CATEGORIES,
    CATEGORY_MAP,
    calculate_category_scores,
    calculate_health_score,
    count_issues,
    health_status_for,
)
from wp_healer.diagnosis.checks.defaults import build_default_registry
from wp_healer.diagnosis.log_analysis import LogAnalysisResult, ParsedError
from wp_healer.diagnosis.probes import HttpProbeResult
from wp_healer.diagnosis.profiles import PROFILE_CONFIGS
from tests.helpers.fakes import CRITICAL_ERROR_PAGE, SITE_DOMAIN, SITE_PATH, script_plugin_fault

HEALTHY_HTTP = HttpProbeResult(200, 200)
NO_MAINTENANCE = {'exists': False, 'is_stuck': False, 'age_minutes': None}
INTEGRITY_OK = {'success': True, 'skipped': False, 'modified_files': []}
DATABASE_OK = {'success': True, 'error': None}


def _result(check_type: CheckType, score: int, priority: CheckPriority,
            status: CheckStatus = CheckStatus.PASS) -> CheckResult:
    return CheckResult(check_type, status, score, '', priority=priority)


def _log(*errors: ParsedError) -> list:
    return [LogAnalysisResult('WordPress Debug Log', f"{SITE_PATH}/wp-content/debug.log", list(errors))]


class TestHealthScore:
    """Priority-weighted scoring."""

    def test_all_perfect_scores_give_100(self) -> None:
        results = [
            _result(CheckType.HTTP_STATUS, 100, CheckPriority.CRITICAL),
            _result(CheckType.DISK_SPACE, 100, CheckPriority.MEDIUM),
            _result(CheckType.SSL_CERTIFICATE, 100, CheckPriority.LOW),
        ]
        assert calculate_health_score(results) == 100

    def test_no_results_give_100(self) -> None:
        assert calculate_health_score([]) == 100

    def test_weights_follow_priority(self) -> None:
        # (0 * 3 + 100 * 1) / 4
        results = [
            _result(CheckType.HTTP_STATUS, 0, CheckPriority.CRITICAL, CheckStatus.FAIL),
            _result(CheckType.DISK_SPACE, 100, CheckPriority.MEDIUM),
        ]
        assert calculate_health_score(results) == 25

    def test_skipped_results_are_ignored(self) -> None:
        results = [
            _result(CheckType.HTTP_STATUS, 90, CheckPriority.CRITICAL),
            _result(CheckType.MALWARE_SCAN, 0, CheckPriority.CRITICAL, CheckStatus.SKIPPED),
        ]
        assert calculate_health_score(results) == 90

    def test_error_results_count_as_zero(self) -> None:
        results = [
            _result(CheckType.DISK_SPACE, 100, CheckPriority.MEDIUM),
            _result(CheckType.WP_CONFIG, 0, CheckPriority.MEDIUM, CheckStatus.ERROR),
        ]
        score = calculate_health_score(results)
        assert 0 <= score <= 100
        assert score == 50

    def test_category_scores_default_to_100(self) -> None:
        scores = calculate_category_scores([
            _result(CheckType.HTTP_STATUS, 40, CheckPriority.CRITICAL, CheckStatus.FAIL),
            _result(CheckType.CORE_INTEGRITY, 80, CheckPriority.HIGH),
        ])
        assert scores['availability'] == 40
        assert scores['security'] == 80
        assert scores['seo'] == 100

    def test_every_categorized_check_is_built_in(self, runner, http_probe) -> None:
        registry = build_default_registry(runner, http_probe)
        assert set(CATEGORY_MAP) <= set(registry.types())
        assert set(CATEGORY_MAP.values()) == set(CATEGORIES)

    def test_count_issues(self) -> None:
        counts = count_issues([
            _result(CheckType.HTTP_STATUS, 0, CheckPriority.CRITICAL, CheckStatus.FAIL),
            _result(CheckType.DISK_SPACE, 70, CheckPriority.MEDIUM, CheckStatus.WARNING),
            _result(CheckType.WP_CONFIG, 100, CheckPriority.MEDIUM),
        ])
        assert counts == {'issues': 2, 'critical': 1, 'warnings': 1}

    @pytest.mark.parametrize('diagnosis_type,score,expected', [
        (DiagnosisType.HEALTHY, 10, HealthStatus.HEALTHY),
        (DiagnosisType.MAINTENANCE, 90, HealthStatus.MAINTENANCE),
        (DiagnosisType.WSOD, 85, HealthStatus.HEALTHY),
        (DiagnosisType.WSOD, 50, HealthStatus.DEGRADED),
        (DiagnosisType.DB_ERROR, 20, HealthStatus.DOWN),
    ])
    def test_health_status_for(self, diagnosis_type, score, expected) -> None:
        assert health_status_for(diagnosis_type, score) == expected


class TestDetermineCause:
    """Fixed precedence of structural signals over log errors."""

    def test_stuck_maintenance_wins_over_everything(self, engine) -> None:
        cause = engine.aggregator.determine_cause(
            _log(ParsedError('t', 'PHP Fatal error', 'x', 'PLUGIN_FAULT', 'p')),
            HttpProbeResult(503, 503),
            {'exists': True, 'is_stuck': True, 'age_minutes': 42},
            {'success': False},
            {'success': False, 'error': 'down'},
        )
        assert cause.diagnosis_type == DiagnosisType.MAINTENANCE
        assert cause.confidence == 1.0
        assert cause.suggested_commands == ['rm -f .maintenance']

    def test_database_failure_wins_over_integrity(self, engine) -> None:
        cause = engine.aggregator.determine_cause(
            [], HEALTHY_HTTP, NO_MAINTENANCE, {'success': False}, {'success': False, 'error': 'Access denied'}
        )
        assert cause.diagnosis_type == DiagnosisType.DB_ERROR
        assert cause.confidence == 0.85
        assert cause.error_message == 'Access denied'

    def test_integrity_failure(self, engine) -> None:
        cause = engine.aggregator.determine_cause([], HEALTHY_HTTP, NO_MAINTENANCE, {'success': False}, DATABASE_OK)
        assert cause.diagnosis_type == DiagnosisType.INTEGRITY
        assert cause.confidence == 0.90

    def test_no_errors_and_200_is_healthy(self, engine) -> None:
        cause = engine.aggregator.determine_cause([], HEALTHY_HTTP, NO_MAINTENANCE, INTEGRITY_OK, DATABASE_OK)
        assert cause.diagnosis_type == DiagnosisType.HEALTHY
        assert cause.suggested_commands == []

    def test_plugin_fault_maps_to_wsod(self, engine) -> None:
        cause = engine.aggregator.determine_cause(
            _log(ParsedError('t', 'PHP Fatal error', 'boom', 'PLUGIN_FAULT', 'bad-plugin')),
            HttpProbeResult(200, 500), NO_MAINTENANCE, INTEGRITY_OK, DATABASE_OK,
        )
        assert cause.diagnosis_type == DiagnosisType.WSOD
        assert cause.confidence == 0.95
        assert cause.culprit == 'bad-plugin'
        assert cause.suggested_commands == ['wp plugin deactivate bad-plugin']

    def test_theme_fault_suggests_fallback_theme(self, engine) -> None:
        cause = engine.aggregator.determine_cause(
            _log(ParsedError('t', 'PHP Parse error', 'syntax error, unexpected "}" in '
                             '/var/www/site/wp-content/themes/shiny/functions.php on line 7',
                             'THEME_FAULT', 'shiny')),
            HttpProbeResult(500, 500), NO_MAINTENANCE, INTEGRITY_OK, DATABASE_OK,
        )
        assert cause.diagnosis_type == DiagnosisType.WSOD
        assert cause.error_type == 'THEME_FAULT'
        assert 'wp theme activate twentytwentyfour' in cause.suggested_commands
        assert cause.details['is_syntax_error'] is True
        assert cause.details['line_number'] == 7

    def test_most_frequent_error_type_wins(self, engine) -> None:
        cause = engine.aggregator.determine_cause(
            _log(
                ParsedError('t', 'PHP Fatal error', 'a', 'PLUGIN_FAULT', 'p'),
                ParsedError('t', 'PHP Fatal error', 'Allowed memory size', 'MEMORY_EXHAUSTION', None),
                ParsedError('t', 'PHP Fatal error', 'Allowed memory size', 'MEMORY_EXHAUSTION', None),
            ),
            HttpProbeResult(500, 500), NO_MAINTENANCE, INTEGRITY_OK, DATABASE_OK,
        )
        assert cause.diagnosis_type == DiagnosisType.MEMORY_EXHAUSTION
        assert cause.confidence == 0.90

    def test_unclassified_failure_is_unknown(self, engine) -> None:
        cause = engine.aggregator.determine_cause(
            [], HttpProbeResult(502, 502), NO_MAINTENANCE, INTEGRITY_OK, DATABASE_OK
        )
        assert cause.diagnosis_type == DiagnosisType.UNKNOWN
        assert cause.confidence == 0.0


class TestDiagnose:
    """Full aggregation over the fake server."""

    @pytest.mark.asyncio
    async def test_clean_site_is_healthy(self, engine, site) -> None:
        record = await engine.aggregator.diagnose(
            site, SITE_PATH, SITE_DOMAIN, DiagnosisProfile.QUICK, PROFILE_CONFIGS[DiagnosisProfile.QUICK]
        )
        assert record.diagnosis_type == DiagnosisType.HEALTHY
        assert record.health_score == 100
        assert record.checks_run == ['HTTP_STATUS', 'MAINTENANCE_MODE']
        assert record.log_files_checked == []

    @pytest.mark.asyncio
    async def test_plugin_fault_in_debug_log(self, engine, site, executor, http_probe) -> None:
        script_plugin_fault(executor)
        http_probe.serve(200, CRITICAL_ERROR_PAGE)

        record = await engine.aggregator.diagnose(
            site, SITE_PATH, SITE_DOMAIN, DiagnosisProfile.LIGHT, PROFILE_CONFIGS[DiagnosisProfile.LIGHT]
        )

        assert record.diagnosis_type == DiagnosisType.WSOD
        assert record.error_type == 'PLUGIN_FAULT'
        assert record.culprit == 'bad-plugin'
        assert record.http_status == 500
        assert f"{SITE_PATH}/wp-content/debug.log" in record.log_files_checked

    @pytest.mark.asyncio
    async def test_failing_probe_falls_back_to_neutral_signal(self, engine, site) -> None:
        async def explode(server_id, site_path):
            raise RuntimeError('probe crashed')

        engine.aggregator.database_probe.probe = explode
        record = await engine.aggregator.diagnose(
            site, SITE_PATH, SITE_DOMAIN, DiagnosisProfile.QUICK, PROFILE_CONFIGS[DiagnosisProfile.QUICK]
        )

        assert record.diagnosis_type == DiagnosisType.HEALTHY
        assert record.details['database']['probe_failed'] is True
