"""End-to-end tests for diagnosis, healing jobs, retries and rollback."""

from __future__ import annotations

import asyncio
import time

import pytest

from wp_healer.core.exceptions import (
    CircuitOpenError,
    InvalidStateError,
    RateLimitExceeded,
    RecordNotFound,
    UnsafeCommandError,
)
from wp_healer.core.models import (
    BackupType,
    CircuitBreakerState,
    DiagnosisType,
    ExecutionStatus,
    HealthStatus,
    TriggerSource,
)
from tests.helpers.fakes import CRITICAL_ERROR_PAGE, HEALTHY_PAGE, heal_and_wait, script_plugin_fault


async def _diagnose_plugin_fault(engine, site, executor, http_probe) -> str:
    script_plugin_fault(executor)
    http_probe.serve(200, CRITICAL_ERROR_PAGE)
    result = await engine.orchestrator.diagnose(site.id, bypass_cache=True)
    return result['execution_id']


class TestDiagnose:
    """Diagnosis requests create DIAGNOSED executions."""

    @pytest.mark.asyncio
    async def test_creates_diagnosed_execution(self, engine, site, executor, http_probe) -> None:
        script_plugin_fault(executor)
        http_probe.serve(200, CRITICAL_ERROR_PAGE)

        result = await engine.orchestrator.diagnose(site.id, triggered_by='ops@example.com')
        execution = engine.orchestrator.get_execution(result['execution_id'])

        assert execution.status == ExecutionStatus.DIAGNOSED
        assert execution.trigger == TriggerSource.MANUAL
        assert execution.triggered_by == 'ops@example.com'
        assert execution.diagnosis_type == DiagnosisType.WSOD
        assert execution.suggested_commands == ['wp plugin deactivate bad-plugin']
        assert execution.diagnosis_details['culprit'] == 'bad-plugin'
        assert execution.diagnosis_details['path'] == site.path
        assert execution.max_attempts == site.max_healing_attempts
        assert result['suggestions'] == []

        stored = engine.store.get('sites', site.id)
        assert stored.last_diagnosed_at is not None
        assert stored.health_score == result['diagnosis']['health_score']

    @pytest.mark.asyncio
    async def test_unknown_site_and_subdomain(self, engine, site) -> None:
        with pytest.raises(RecordNotFound):
            await engine.orchestrator.diagnose('nope')
        with pytest.raises(RecordNotFound, match='Subdomain not found'):
            await engine.orchestrator.diagnose(site.id, subdomain='blog.example.com')

    @pytest.mark.asyncio
    async def test_subdomain_execution_targets_subdomain_path(self, engine, site) -> None:
        result = await engine.orchestrator.diagnose(site.id, subdomain='shop.example.com', profile='QUICK')
        details = engine.orchestrator.get_execution(result['execution_id']).diagnosis_details

        assert details['path'] == '/var/www/shop'
        assert details['domain'] == 'shop.example.com'
        assert details['subdomain'] == 'shop.example.com'

    @pytest.mark.asyncio
    async def test_cooldown_is_enforced(self, engine, site) -> None:
        site.healing_cooldown = 600
        engine.store.upsert('sites', site)

        await engine.orchestrator.diagnose(site.id, profile='QUICK')
        with pytest.raises(RateLimitExceeded) as exc_info:
            await engine.orchestrator.diagnose(site.id, profile='QUICK')
        assert 0 < exc_info.value.retry_after <= 600

    @pytest.mark.asyncio
    async def test_learned_pattern_replaces_suggested_commands(self, engine, site, executor, http_probe) -> None:
        first = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        http_probe.serve(200, HEALTHY_PAGE)
        await heal_and_wait(engine, first, ['wp plugin deactivate bad-plugin', 'wp cache flush'])

        http_probe.serve(200, CRITICAL_ERROR_PAGE)
        result = await engine.orchestrator.diagnose(site.id, bypass_cache=True)
        execution = engine.orchestrator.get_execution(result['execution_id'])

        assert len(result['suggestions']) == 1
        assert execution.suggested_commands == ['wp plugin deactivate bad-plugin', 'wp cache flush']
        assert execution.pattern_id == result['suggestions'][0]['pattern_id']


class TestHeal:
    """Approval, the healing job and its bookkeeping."""

    @pytest.mark.asyncio
    async def test_plugin_fault_is_healed(self, engine, site, executor, http_probe, backup_service) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        http_probe.serve(200, HEALTHY_PAGE)

        queued = await heal_and_wait(engine, execution_id)
        execution = engine.orchestrator.get_execution(execution_id)

        assert queued['status'] == 'QUEUED'
        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.verification_score == 100
        assert execution.backup_id == backup_service.created[0].id
        assert backup_service.created[0].backup_type == BackupType.FULL
        assert executor.ran(f"cd {site.path} && wp plugin deactivate bad-plugin --allow-root")

        stored = engine.store.get('sites', site.id)
        assert stored.health_status == HealthStatus.HEALTHY
        assert stored.healing_attempts == 0
        assert stored.last_healed_at is not None

        patterns = engine.store.query('patterns')
        assert len(patterns) == 1
        assert patterns[0].success_count == 1

    @pytest.mark.asyncio
    async def test_healthy_diagnosis_has_nothing_to_heal(self, engine, site) -> None:
        result = await engine.orchestrator.diagnose(site.id, profile='QUICK')
        with pytest.raises(InvalidStateError, match='has no remediation'):
            await engine.orchestrator.heal(result['execution_id'])

    @pytest.mark.asyncio
    async def test_only_diagnosed_executions_can_be_healed(self, engine, site, executor, http_probe) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        http_probe.serve(200, HEALTHY_PAGE)
        await heal_and_wait(engine, execution_id)

        with pytest.raises(InvalidStateError) as exc_info:
            await engine.orchestrator.heal(execution_id)
        assert exc_info.value.current == 'SUCCESS'

    @pytest.mark.asyncio
    async def test_unknown_execution(self, engine) -> None:
        with pytest.raises(RecordNotFound):
            await engine.orchestrator.heal('missing')

    @pytest.mark.asyncio
    async def test_unsafe_custom_commands_are_rejected_before_anything_runs(
            self, engine, site, executor, http_probe) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        commands_before = len(executor.commands)

        with pytest.raises(UnsafeCommandError):
            await engine.orchestrator.heal(execution_id, ['wp cache flush', 'rm -rf /var/www'])

        assert engine.orchestrator.get_execution(execution_id).status == ExecutionStatus.DIAGNOSED
        assert len(executor.commands) == commands_before

    @pytest.mark.asyncio
    async def test_custom_commands_replace_default_remediation(self, engine, site, executor, http_probe) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        http_probe.serve(200, HEALTHY_PAGE)

        await heal_and_wait(engine, execution_id, ['# operator fix', 'wp plugin deactivate --all'])
        execution = engine.orchestrator.get_execution(execution_id)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.custom_commands == ['wp plugin deactivate --all']
        assert not executor.ran('wp plugin deactivate bad-plugin')

    @pytest.mark.asyncio
    async def test_backup_failure_stops_remediation(self, engine, site, executor, http_probe, backup_service) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        backup_service.fail_with = 'No space left on device'

        await heal_and_wait(engine, execution_id)
        execution = engine.orchestrator.get_execution(execution_id)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message == 'No space left on device'
        assert not executor.ran('plugin deactivate')
        assert engine.store.get('sites', site.id).health_status == HealthStatus.DOWN


class TestFailureHandling:
    """Retries, the circuit breaker and job timeouts."""

    @pytest.mark.asyncio
    async def test_three_failures_open_the_breaker(self, engine, site, executor, http_probe) -> None:
        script_plugin_fault(executor)
        http_probe.serve(200, CRITICAL_ERROR_PAGE)
        executor.on('curl -s -o /dev/null', '500|100')

        for _ in range(3):
            result = await engine.orchestrator.diagnose(site.id, bypass_cache=True)
            await heal_and_wait(engine, result['execution_id'])
            assert engine.orchestrator.get_execution(result['execution_id']).status == ExecutionStatus.FAILED

        stored = engine.store.get('sites', site.id)
        assert stored.circuit_breaker_state == CircuitBreakerState.OPEN
        assert stored.consecutive_failures == 3
        assert engine.store.get_alerts(component='circuit_breaker')

        result = await engine.orchestrator.diagnose(site.id, bypass_cache=True)
        commands_before = len(executor.commands)
        with pytest.raises(CircuitOpenError, match='Circuit breaker is open'):
            await engine.orchestrator.heal(result['execution_id'])
        assert len(executor.commands) == commands_before
        assert engine.orchestrator.get_execution(result['execution_id']).status == ExecutionStatus.DIAGNOSED

    @pytest.mark.asyncio
    async def test_custom_commands_bypass_an_open_breaker(self, engine, site, executor, http_probe) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        engine.breaker.open(site.id, 'manual')

        queued = await engine.orchestrator.heal(execution_id, ['wp plugin deactivate bad-plugin'])
        assert queued['status'] == 'QUEUED'

    @pytest.mark.asyncio
    async def test_retryable_failure_is_retried_until_the_breaker_opens(
            self, engine, site, executor, http_probe, backup_service) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        backup_service.fail_with = 'Connection reset by peer'

        await heal_and_wait(engine, execution_id)

        attempts = engine.store.query('executions', lambda d: d['status'] == 'FAILED',
                                      sort_key=lambda d: d['attempt_number'])
        assert [e.attempt_number for e in attempts] == [1, 2, 3]
        assert attempts[1].previous_attempt_id == attempts[0].id
        assert attempts[2].previous_attempt_id == attempts[1].id
        assert attempts[1].retry_reason.startswith('Retrying with EXPONENTIAL')
        assert engine.store.get('sites', site.id).circuit_breaker_state == CircuitBreakerState.OPEN

    @pytest.mark.asyncio
    async def test_slow_healing_job_times_out(self, engine, site, executor, http_probe, backup_service) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)

        async def slow_backup(target, kind):
            await asyncio.sleep(1)

        backup_service.create_backup = slow_backup
        engine.executor.job_timeout = 0.05

        await heal_and_wait(engine, execution_id)
        execution = engine.orchestrator.get_execution(execution_id)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message == 'Healing job timeout after 0.05s'


class TestRollbackAndHistory:
    """Rollback, manual breaker reset and execution history."""

    @pytest.mark.asyncio
    async def test_rollback_restores_pre_healing_backup(
            self, engine, site, executor, http_probe, backup_service) -> None:
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        http_probe.serve(200, HEALTHY_PAGE)
        await heal_and_wait(engine, execution_id)

        execution = await engine.orchestrator.rollback(execution_id)

        assert execution.status == ExecutionStatus.ROLLED_BACK
        assert backup_service.restored == [execution.backup_id]

    @pytest.mark.asyncio
    async def test_rollback_without_backup(self, engine, site) -> None:
        result = await engine.orchestrator.diagnose(site.id, profile='QUICK')
        with pytest.raises(RecordNotFound):
            await engine.orchestrator.rollback(result['execution_id'])

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self, engine, site) -> None:
        engine.breaker.open(site.id, 'manual')
        status = engine.orchestrator.reset_circuit_breaker(site.id)

        assert status['state'] == 'CLOSED'
        assert status['consecutive_failures'] == 0
        assert status['can_heal'] is True

    @pytest.mark.asyncio
    async def test_history_is_paginated_most_recent_first(self, engine, site) -> None:
        ids = []
        for _ in range(3):
            result = await engine.orchestrator.diagnose(site.id, profile='QUICK', bypass_cache=True)
            ids.append(result['execution_id'])

        history = engine.orchestrator.get_healing_history(site.id, page=1, limit=2)

        assert history['pagination'] == {'total': 3, 'page': 1, 'limit': 2, 'total_pages': 2}
        assert [e['id'] for e in history['data']] == [ids[2], ids[1]]
        assert engine.orchestrator.get_healing_history('other-site')['pagination']['total'] == 0


class TestConcurrentHealingGuard:
    """A site is healed by at most one execution at a time."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status', [
        ExecutionStatus.APPROVED,
        ExecutionStatus.PENDING,
        ExecutionStatus.HEALING,
        ExecutionStatus.VERIFYING,
    ])
    async def test_second_heal_is_rejected_while_another_execution_is_active(
            self, engine, site, executor, http_probe, status) -> None:
        first_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        first = engine.store.get('executions', first_id)
        first.status = status
        engine.store.upsert('executions', first)

        second_id = (await engine.orchestrator.diagnose(site.id, bypass_cache=True))['execution_id']
        with pytest.raises(InvalidStateError, match='already being healed'):
            await engine.orchestrator.heal(second_id)

        assert engine.orchestrator.get_execution(second_id).status == ExecutionStatus.DIAGNOSED
        assert engine.queue.get_stats()['queued'] == 0

    @pytest.mark.asyncio
    async def test_finished_executions_do_not_block(self, engine, site, executor, http_probe) -> None:
        first_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        first = engine.store.get('executions', first_id)
        first.status = ExecutionStatus.FAILED
        engine.store.upsert('executions', first)

        second_id = (await engine.orchestrator.diagnose(site.id, bypass_cache=True))['execution_id']
        queued = await engine.orchestrator.heal(second_id)

        assert queued['status'] == 'QUEUED'


class TestEnqueueFailure:
    """A heal that never reaches the queue leaves the breaker usable."""

    @pytest.mark.asyncio
    async def test_half_open_trial_is_released(self, engine, site, executor, http_probe, monkeypatch) -> None:
        engine.breaker.open(site.id, 'manual')
        stored = engine.store.get('sites', site.id)
        stored.circuit_breaker_reset_at = time.time() - 1
        engine.store.upsert('sites', stored)

        async def broken_enqueue(name, payload, delay_ms=0, job_id=None):
            raise RuntimeError('queue unavailable')

        monkeypatch.setattr(engine.queue, 'enqueue', broken_enqueue)
        execution_id = await _diagnose_plugin_fault(engine, site, executor, http_probe)
        with pytest.raises(RuntimeError, match='queue unavailable'):
            await engine.orchestrator.heal(execution_id)

        execution = engine.orchestrator.get_execution(execution_id)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message == 'queue unavailable'
        status = engine.breaker.get_status(site.id)
        assert status['state'] == 'HALF_OPEN'
        assert status['can_heal'] is True

        monkeypatch.undo()
        retry_id = (await engine.orchestrator.diagnose(site.id, bypass_cache=True))['execution_id']
        queued = await engine.orchestrator.heal(retry_id)
        assert queued['status'] == 'QUEUED'
