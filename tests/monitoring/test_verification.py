"""Tests for post-healing verification scoring."""

from __future__ import annotations

from datetime import datetime

import aiohttp
import pytest

from wp_healer.monitoring.verification import VerificationEngine, count_recent_errors
from tests.helpers.fakes import SITE_DOMAIN, SITE_PATH


def _by_name(result) -> dict:
    return {check['name']: check for check in result['checks']}


class TestVerificationEngine:
    """Five dimensions adding up to 100."""

    @pytest.mark.asyncio
    async def test_healthy_site_scores_full_marks(self, runner, http_probe) -> None:
        result = await VerificationEngine(runner, http_probe).verify('server-1', SITE_PATH, SITE_DOMAIN)

        assert result['score'] == 100
        assert result['passed'] is True
        assert [c['name'] for c in result['checks']] == [
            'HTTP Status', 'Content Analysis', 'Error Logs', 'WordPress Functionality', 'Performance'
        ]
        assert result['metrics']['http_status'] == 200
        assert result['metrics']['has_errors'] is False

    @pytest.mark.asyncio
    async def test_fatal_error_on_a_200_page_fails(self, runner, http_probe) -> None:
        http_probe.serve(200, '<html><head><title>x</title></head><body>'
                              'Fatal error: Uncaught Error in functions.php' + 'x' * 1200
                              + '</body></html>')

        result = await VerificationEngine(runner, http_probe).verify('server-1', SITE_PATH, SITE_DOMAIN)
        checks = _by_name(result)

        assert checks['HTTP Status']['score'] == 0
        assert checks['Content Analysis']['score'] == 0
        assert result['passed'] is False
        assert result['metrics']['has_errors'] is True

    @pytest.mark.asyncio
    async def test_unreachable_site_scores_only_server_side_checks(self, runner, http_probe) -> None:
        http_probe.error = aiohttp.ClientConnectionError('Connection refused')

        result = await VerificationEngine(runner, http_probe).verify('server-1', SITE_PATH, SITE_DOMAIN)

        assert result['score'] == 40
        assert result['passed'] is False
        assert result['metrics']['http_status'] == 0

    @pytest.mark.asyncio
    async def test_failing_wp_cli_costs_functionality_points(self, runner, http_probe, executor) -> None:
        executor.on('wp db check', success=False, error='Error: Database connection failed')

        result = await VerificationEngine(runner, http_probe).verify('server-1', SITE_PATH, SITE_DOMAIN)
        functionality = _by_name(result)['WordPress Functionality']

        assert functionality['score'] == 10
        assert functionality['passed'] is False
        assert result['score'] == 90

    @pytest.mark.asyncio
    async def test_server_side_dimensions_run_concurrently(self, runner, http_probe, executor) -> None:
        executor.latency = 0.05

        result = await VerificationEngine(runner, http_probe).verify('server-1', SITE_PATH, SITE_DOMAIN)

        assert result['score'] == 100
        assert executor.peak_in_flight == 4

    @pytest.mark.asyncio
    async def test_min_score_is_configurable(self, runner, http_probe, executor) -> None:
        executor.on('wp db check', success=False, error='Error: Database connection failed')
        result = await VerificationEngine(runner, http_probe, min_score=95).verify('server-1', SITE_PATH, SITE_DOMAIN)
        assert result['passed'] is False


class TestCountRecentErrors:
    """Only fatal, parse and warning lines of the last five minutes count."""

    def test_window_and_markers(self) -> None:
        now = datetime(2024, 5, 1, 12, 0, 0)
        log = '\n'.join([
            '[01-May-2024 11:58:00 UTC] PHP Fatal error:  Uncaught Error',
            '[01-May-2024 11:59:30 UTC] PHP Warning:  Undefined variable',
            '[01-May-2024 11:59:45 UTC] PHP Notice:  Undefined index',
            '[01-May-2024 11:50:00 UTC] PHP Parse error:  syntax error',
            'No logs',
        ])
        assert count_recent_errors(log, now) == 2

    def test_empty_output(self) -> None:
        assert count_recent_errors('') == 0
