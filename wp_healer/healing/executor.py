"""
Healing Job Executor
Worker side of the 'heal' job: backup, remediation, verification and the
success/failure bookkeeping that feeds retries, the circuit breaker and
pattern learning.
"""

import asyncio
import logging
import time
from typing import Dict, Any, Optional

from wp_healer.core.exceptions import RecordNotFound, RemediationError
from wp_healer.core.interfaces import BackupService, JobQueue
from wp_healer.core.log_manager import log_healing_event
from wp_healer.core.models import Execution, ExecutionStatus, HealthStatus, BackupType, Target
from wp_healer.core.store import RecordStore
from wp_healer.healing.orchestrator import HEAL_JOB
from wp_healer.healing.patterns import PatternLearningStore
from wp_healer.healing.runbooks import RunbookDispatcher, HealingContext
from wp_healer.monitoring.verification import VerificationEngine
from wp_healer.utils.resilience import CircuitBreakerService, RetryService

logger = logging.getLogger(__name__)

RUNNABLE_STATUSES = (ExecutionStatus.APPROVED, ExecutionStatus.PENDING)


class HealingJobExecutor:
    """
    HealingJobExecutor handles:
    - Full backup before any change
    - Runbook selection and execution
    - Runbook and independent verification
    - Success/failure recording, retries and pattern learning
    """

    def __init__(self,
                 store: RecordStore,
                 dispatcher: RunbookDispatcher,
                 backup_service: BackupService,
                 verification: VerificationEngine,
                 patterns: PatternLearningStore,
                 breaker: CircuitBreakerService,
                 retry: RetryService,
                 queue: JobQueue,
                 job_timeout: float = 600):
        """
        Initialize the executor

        Args:
            store (RecordStore): Record store
            dispatcher (RunbookDispatcher): Maps diagnosis types to runbooks
            backup_service (BackupService): Creates the pre-healing backup
            verification (VerificationEngine): Independent post-healing verification
            patterns (PatternLearningStore): Learned remediation patterns
            breaker (CircuitBreakerService): Per-site circuit breaker
            retry (RetryService): Retry decisions
            queue (JobQueue): Queue receiving retry jobs
            job_timeout (float): Seconds allowed for one healing attempt
        """
        self.store = store
        self.dispatcher = dispatcher
        self.backup_service = backup_service
        self.verification = verification
        self.patterns = patterns
        self.breaker = breaker
        self.retry = retry
        self.queue = queue
        self.job_timeout = job_timeout

    def register(self, queue):
        """Register the heal job handler on an AsyncJobQueue"""
        queue.register(HEAL_JOB, self.handle_heal)

    async def handle_heal(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process a 'heal' job

        Args:
            payload (Dict[str, Any]): Job payload with 'execution_id'

        Returns:
            Dict[str, Any]: 'execution_id', 'status' and 'error' on failure
        """
        execution_id = payload['execution_id']
        execution = self.store.get('executions', execution_id)
        if execution is None:
            raise RecordNotFound('Execution', execution_id)

        if execution.status not in RUNNABLE_STATUSES:
            logger.warning(f"Skipping heal job for execution {execution_id} in status {execution.status.value}")
            return {'execution_id': execution_id, 'status': execution.status.value}

        logger.info(f"Processing healing job for execution {execution_id}")
        execution.status = ExecutionStatus.HEALING
        execution.started_at = time.time()
        execution.add_log('INFO', f"Healing started (attempt {execution.attempt_number}/{execution.max_attempts})")
        self.store.upsert('executions', execution)
        log_healing_event(execution.site_id, execution_id, 'Healing started')

        try:
            await asyncio.wait_for(self._heal(execution), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            error_message = f"Healing job timeout after {self.job_timeout}s"
            await self._handle_failure(execution_id, error_message)
            return {'execution_id': execution_id, 'status': ExecutionStatus.FAILED.value, 'error': error_message}
        except Exception as e:
            logger.error(f"Healing failed for execution {execution_id}: {str(e)}")
            await self._handle_failure(execution_id, str(e))
            return {'execution_id': execution_id, 'status': ExecutionStatus.FAILED.value, 'error': str(e)}

        return {'execution_id': execution_id, 'status': ExecutionStatus.SUCCESS.value}

    def _target_for(self, execution: Execution) -> Target:
        target = self.store.get('sites', execution.site_id)
        if target is None:
            raise RecordNotFound('Site', execution.site_id)
        # Subdomain executions operate on the subdomain's directory
        target.path = execution.diagnosis_details.get('path') or target.path
        return target

    async def _heal(self, execution: Execution):
        target = self._target_for(execution)
        domain = execution.diagnosis_details.get('domain') or target.domain

        backup = await self.backup_service.create_backup(target, BackupType.FULL)
        execution.backup_id = backup.id
        execution.add_log('INFO', f"Backup created: {backup.id}")
        self.store.upsert('executions', execution)

        context = HealingContext(target, execution, target.path, domain, execution.custom_commands)
        runbook = self.dispatcher.select(execution.diagnosis_type, bool(execution.custom_commands))
        remediation = await runbook.execute(context)
        execution.add_log('INFO', remediation.action)
        for command in remediation.commands:
            execution.add_log('INFO', f"Executed: {command}")

        execution.status = ExecutionStatus.VERIFYING
        self.store.upsert('executions', execution)

        runbook_verified = await runbook.verify(context)
        verification = await self.verification.verify(
            target.server_id, target.path, domain, execution.diagnosis_type
        )
        execution.verification_score = verification['score']
        execution.verification_checks = verification['checks']
        execution.verification_results = {
            'passed': verification['passed'],
            'runbook_verified': runbook_verified,
            'metrics': verification['metrics']
        }
        execution.verified_at = time.time()
        self.store.upsert('executions', execution)

        if not runbook_verified:
            raise RemediationError(f"{runbook.name} verification failed after: {remediation.action}")
        if not verification['passed']:
            raise RemediationError(f"Verification failed: score {verification['score']}/100")

        self._handle_success(execution)

    def _handle_success(self, execution: Execution):
        now = time.time()
        execution.status = ExecutionStatus.SUCCESS
        execution.finished_at = now
        execution.duration = (now - execution.started_at) * 1000 if execution.started_at else None
        execution.add_log('INFO', f"Healing succeeded (verification score {execution.verification_score})")
        self.store.upsert('executions', execution)

        site = self.store.get('sites', execution.site_id)
        site.health_status = HealthStatus.HEALTHY
        site.healing_attempts = 0
        site.last_healed_at = now
        self.store.upsert('sites', site)

        self.breaker.record_success(execution.site_id)
        self.patterns.learn_from_success(execution.id)

        log_healing_event(execution.site_id, execution.id, 'Healing succeeded')
        logger.info(f"Healing completed successfully for execution {execution.id}")

    async def _handle_failure(self, execution_id: str, error_message: str) -> Optional[Execution]:
        """
        Record a failed attempt and schedule a retry when allowed

        Returns:
            Optional[Execution]: The retry execution, if one was scheduled
        """
        self.patterns.record_failure(execution_id)

        execution = self.store.get('executions', execution_id)
        now = time.time()
        execution.status = ExecutionStatus.FAILED
        execution.error_message = error_message
        execution.finished_at = now
        execution.duration = (now - execution.started_at) * 1000 if execution.started_at else None
        execution.add_log('ERROR', f"Healing failed: {error_message}")
        self.store.upsert('executions', execution)
        log_healing_event(execution.site_id, execution_id, f"Healing failed: {error_message}", logging.ERROR)

        site = self.store.get('sites', execution.site_id)
        if site is None:
            return None
        site.health_status = HealthStatus.DOWN
        site.healing_attempts += 1
        self.store.upsert('sites', site)

        self.breaker.record_failure(site.id)

        decision = self.retry.should_retry(execution, error_message)
        if not decision['should_retry']:
            logger.info(f"Not retrying execution {execution_id}: {decision['reason']}")
            return None

        retry = self.retry.create_retry_execution(execution, decision['attempt_number'], decision['reason'])
        await self.queue.enqueue(HEAL_JOB, {
            'execution_id': retry.id,
            'site_id': retry.site_id,
            'diagnosis_type': retry.diagnosis_type.value,
            'custom_commands': retry.custom_commands
        }, delay_ms=decision['delay_ms'])

        execution.add_log('INFO', f"Retry scheduled as execution {retry.id} in {decision['delay_ms']}ms")
        self.store.upsert('executions', execution)
        logger.info(f"Scheduled retry {retry.id} (attempt {retry.attempt_number}) in {decision['delay_ms']}ms")
        return retry
