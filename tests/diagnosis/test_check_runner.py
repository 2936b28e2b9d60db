"""Tests for CheckRegistry, CheckRunner and the built-in site checks."""

from __future__ import annotations

import time

import pytest

from wp_healer.core.models import CheckPriority, CheckStatus, CheckType, CheckResult
from wp_healer.diagnosis.checks.runner import CheckRegistry, CheckRunner
from wp_healer.diagnosis.checks.site_checks import HttpStatusCheck, MaintenanceModeCheck
from tests.helpers.fakes import CRITICAL_ERROR_PAGE, SITE_DOMAIN, SITE_PATH, StaticCheck


def _runner(*checks: StaticCheck) -> CheckRunner:
    registry = CheckRegistry()
    for check in checks:
        registry.register(check)
    return CheckRunner(registry)


class TestCheckRegistry:
    """Registration keyed by check type."""

    def test_register_replaces_same_type(self) -> None:
        registry = CheckRegistry()
        first = StaticCheck(CheckType.DISK_SPACE, score=10)
        second = StaticCheck(CheckType.DISK_SPACE, score=90)
        registry.register(first)
        registry.register(second)

        assert len(registry) == 1
        assert registry.get(CheckType.DISK_SPACE) is second
        assert CheckType.DISK_SPACE in registry

    def test_priority_of_unknown_type_is_medium(self) -> None:
        assert CheckRegistry().priority_of(CheckType.SEO_HEALTH) == CheckPriority.MEDIUM


class TestCheckRunner:
    """Per-check isolation of failures and timeouts."""

    @pytest.mark.asyncio
    async def test_raising_check_yields_error_and_others_complete(self, site) -> None:
        healthy = StaticCheck(CheckType.HTTP_STATUS)
        broken = StaticCheck(CheckType.DISK_SPACE, raises=RuntimeError('df exploded'))
        runner = _runner(healthy, broken)

        results = await runner.run(site, SITE_PATH, SITE_DOMAIN, [CheckType.HTTP_STATUS, CheckType.DISK_SPACE])

        assert [r.check_type for r in results] == [CheckType.HTTP_STATUS, CheckType.DISK_SPACE]
        assert results[0].status == CheckStatus.PASS
        assert results[1].status == CheckStatus.ERROR
        assert results[1].score == 0
        assert 'df exploded' in results[1].message

    @pytest.mark.asyncio
    async def test_slow_check_times_out(self, site) -> None:
        slow = StaticCheck(CheckType.SSL_CERTIFICATE, delay=2.0)
        fast = StaticCheck(CheckType.HTTP_STATUS)
        runner = _runner(slow, fast)

        start = time.time()
        results = await runner.run(site, SITE_PATH, SITE_DOMAIN,
                                   [CheckType.SSL_CERTIFICATE, CheckType.HTTP_STATUS], timeout_ms=50)

        assert time.time() - start < 1.5
        assert results[0].status == CheckStatus.ERROR
        assert 'timed out' in results[0].message
        assert results[1].status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_unregistered_check_is_skipped(self, site) -> None:
        results = await _runner().run(site, SITE_PATH, SITE_DOMAIN, [CheckType.MALWARE_SCAN])

        assert results[0].status == CheckStatus.SKIPPED
        assert results[0].score == 0

    @pytest.mark.asyncio
    async def test_sequential_mode_keeps_request_order(self, site) -> None:
        checks = [StaticCheck(t) for t in (CheckType.WP_VERSION, CheckType.HTACCESS, CheckType.WP_CONFIG)]
        runner = _runner(*checks)

        results = await runner.run(site, SITE_PATH, SITE_DOMAIN,
                                   [CheckType.WP_CONFIG, CheckType.WP_VERSION], parallel=False)

        assert [r.check_type for r in results] == [CheckType.WP_CONFIG, CheckType.WP_VERSION]
        assert checks[1].calls == 0


class TestCheckResult:
    """Score bounds on results."""

    def test_score_is_clamped(self) -> None:
        assert CheckResult(CheckType.DISK_SPACE, CheckStatus.PASS, 150, '').score == 100
        assert CheckResult(CheckType.DISK_SPACE, CheckStatus.FAIL, -20, '').score == 0


class TestSiteChecks:
    """Built-in checks over the fake transport."""

    @pytest.mark.asyncio
    async def test_http_status_fails_on_critical_error_page(self, site, runner, http_probe) -> None:
        http_probe.serve(200, CRITICAL_ERROR_PAGE)
        result = await HttpStatusCheck(runner, http_probe).check(site, SITE_PATH, SITE_DOMAIN)

        assert result.status == CheckStatus.FAIL
        assert result.priority == CheckPriority.CRITICAL
        assert result.details['effective_status'] == 500

    @pytest.mark.asyncio
    async def test_http_status_passes_on_healthy_page(self, site, runner, http_probe) -> None:
        result = await HttpStatusCheck(runner, http_probe).check(site, SITE_PATH, SITE_DOMAIN)

        assert result.status == CheckStatus.PASS
        assert result.score == 100
        assert http_probe.urls == [f"https://{SITE_DOMAIN}"]

    @pytest.mark.asyncio
    async def test_maintenance_stuck_for_an_hour_fails(self, site, runner, executor) -> None:
        executor.on(f"test -f {SITE_PATH}/.maintenance", 'exists')
        executor.on('stat -c %Y', str(int(time.time()) - 3600))

        result = await MaintenanceModeCheck(runner).check(site, SITE_PATH, SITE_DOMAIN)

        assert result.status == CheckStatus.FAIL
        assert result.details['is_stuck'] is True

    @pytest.mark.asyncio
    async def test_fresh_maintenance_file_warns(self, site, runner, executor) -> None:
        executor.on(f"test -f {SITE_PATH}/.maintenance", 'exists')
        executor.on('stat -c %Y', str(int(time.time()) - 60))

        result = await MaintenanceModeCheck(runner).check(site, SITE_PATH, SITE_DOMAIN)

        assert result.status == CheckStatus.WARNING
        assert result.score == 70
