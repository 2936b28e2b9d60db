"""Tests for execution history metrics."""

from __future__ import annotations

import time

import pytest

from wp_healer.core.models import DiagnosisType, Execution, ExecutionStatus, TriggerSource
from wp_healer.monitoring.metrics import HealingMetrics


def _execution(store, status: ExecutionStatus, site_id: str = 'site-1', **fields) -> Execution:
    now = time.time()
    execution = Execution(site_id, TriggerSource.MANUAL, None, fields.pop('diagnosis_type', DiagnosisType.WSOD),
                          status, created_at=fields.pop('created_at', now - 60), **fields)
    store.upsert('executions', execution)
    return execution


class TestHealingMetrics:
    """Rates, timings and the low success rate alert."""

    def test_rates_and_counts(self, store) -> None:
        now = time.time()
        _execution(store, ExecutionStatus.SUCCESS, approved_at=now - 50, finished_at=now - 40,
                   verification_score=100, pattern_id='p-1')
        _execution(store, ExecutionStatus.SUCCESS, attempt_number=2, approved_at=now - 50, finished_at=now - 30,
                   verification_score=80)
        _execution(store, ExecutionStatus.FAILED, pattern_id='p-1')
        _execution(store, ExecutionStatus.DIAGNOSED, diagnosis_type=DiagnosisType.MAINTENANCE)
        _execution(store, ExecutionStatus.SUCCESS, site_id='site-2')

        metrics = HealingMetrics(store).get_metrics('site-1')

        assert metrics['total_diagnoses'] == 4
        assert metrics['by_diagnosis_type']['WSOD'] == 3
        assert metrics['by_diagnosis_type']['MAINTENANCE'] == 1
        assert metrics['total_healings'] == 3
        assert metrics['successful_healings'] == 2
        assert metrics['failed_healings'] == 1
        assert metrics['healing_success_rate'] == pytest.approx(2 / 3)
        assert metrics['first_attempt_success_rate'] == pytest.approx(1 / 3)
        assert metrics['avg_healing_time'] == pytest.approx(15000, rel=0.01)
        assert metrics['avg_verification_score'] == pytest.approx(90)
        assert metrics['patterns_applied'] == 2
        assert metrics['pattern_success_rate'] == pytest.approx(0.5)
        assert store.get_alerts(component='healing_metrics') == []

    def test_low_success_rate_raises_an_alert(self, store) -> None:
        _execution(store, ExecutionStatus.SUCCESS)
        _execution(store, ExecutionStatus.FAILED)

        metrics = HealingMetrics(store).get_metrics()

        assert metrics['healing_success_rate'] == pytest.approx(0.5)
        alerts = store.get_alerts(component='healing_metrics', level='ERROR')
        assert len(alerts) == 1
        assert 'Healing success rate is 50.0%' in alerts[0]['message']

    def test_period_excludes_old_executions(self, store) -> None:
        _execution(store, ExecutionStatus.FAILED, created_at=time.time() - 3 * 86400)

        metrics = HealingMetrics(store).get_metrics(period_seconds=86400)

        assert metrics['total_diagnoses'] == 0
        assert metrics['healing_success_rate'] is None
        assert metrics['avg_healing_time'] is None
        assert store.get_alerts() == []
