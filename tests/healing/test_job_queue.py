"""Tests for the delay-capable healing job queue."""

from __future__ import annotations

import asyncio

import pytest

from wp_healer.healing.job_queue import AsyncJobQueue


@pytest.fixture
def queue(store) -> AsyncJobQueue:
    return AsyncJobQueue(store, workers=1, poll_interval=0.01)


class TestAsyncJobQueue:
    """Ordering, completion tracking and statistics."""

    @pytest.mark.asyncio
    async def test_unregistered_job_is_rejected(self, queue) -> None:
        with pytest.raises(ValueError, match="No handler registered for job 'heal'"):
            await queue.enqueue('heal', {})

    @pytest.mark.asyncio
    async def test_due_jobs_run_before_delayed_ones(self, queue) -> None:
        order = []

        async def record(payload):
            order.append(payload['n'])

        queue.register('record', record)
        await queue.enqueue('record', {'n': 'later'}, delay_ms=50)
        await queue.enqueue('record', {'n': 'now'})

        await queue.start()
        try:
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert order == ['now', 'later']

    @pytest.mark.asyncio
    async def test_join_waits_for_jobs_queued_by_jobs(self, queue) -> None:
        seen = []

        async def chain(payload):
            seen.append(payload['step'])
            if payload['step'] < 3:
                await queue.enqueue('chain', {'step': payload['step'] + 1}, delay_ms=10)

        queue.register('chain', chain)
        await queue.start()
        try:
            await queue.enqueue('chain', {'step': 1})
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failed_job_is_recorded_and_queue_keeps_running(self, queue) -> None:
        async def explode(payload):
            raise RuntimeError('boom')

        async def fine(payload):
            return 'ok'

        queue.register('explode', explode)
        queue.register('fine', fine)
        await queue.start()
        try:
            failed_id = await queue.enqueue('explode', {})
            ok_id = await queue.enqueue('fine', {})
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert queue.get_job(failed_id)['status'] == 'FAILED'
        assert queue.get_job(failed_id)['error'] == 'boom'
        assert queue.get_job(ok_id)['status'] == 'COMPLETED'

        stats = queue.get_stats()
        assert stats['total_jobs'] == 2
        assert stats['completed_jobs'] == 1
        assert stats['failed_jobs'] == 1
        assert stats['queued'] == 0
        assert stats['workers'] == 1

    @pytest.mark.asyncio
    async def test_explicit_job_id_is_kept(self, queue) -> None:
        async def noop(payload):
            return None

        queue.register('noop', noop)
        job_id = await queue.enqueue('noop', {'x': 1}, job_id='job-42')

        assert job_id == 'job-42'
        assert queue.get_job('job-42')['status'] == 'QUEUED'
        assert queue.get_job('missing') is None


class TestQueueLifecycle:
    """Component status, heartbeat metrics and failure alerts."""

    @pytest.mark.asyncio
    async def test_repeated_failures_degrade_and_alert_once(self, queue, store) -> None:
        async def explode(payload):
            raise RuntimeError(f"boom {payload['n']}")

        queue.register('explode', explode)
        await queue.start()
        try:
            for n in range(6):
                await queue.enqueue('explode', {'n': n})
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert queue.health_status() == 'degraded'
        last_failure = store.components['job_queue'].metrics['last_failure']
        assert last_failure['error'] == 'boom 5'
        assert last_failure['context'] == 'job explode'
        alerts = store.get_alerts(component='job_queue', level='WARNING')
        assert len(alerts) == 1
        assert '5 failures' in alerts[0]['message']
        assert store.components['job_queue'].status == 'stopped'

    @pytest.mark.asyncio
    async def test_heartbeat_metrics_include_queue_stats(self, queue) -> None:
        metrics = await queue.collect_metrics()

        assert metrics['memory_mb'] > 0
        assert metrics['failures'] == 0
        assert metrics['queued'] == 0
        assert metrics['workers'] == 1
        assert queue.health_status() == 'healthy'
