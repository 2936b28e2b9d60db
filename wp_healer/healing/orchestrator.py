"""
Healing Orchestrator
Turns diagnoses into executions and drives them through the healing state
machine: DIAGNOSED -> APPROVED -> HEALING -> SUCCESS | FAILED -> ROLLED_BACK.
"""

import logging
import math
import time
from typing import Dict, Any, List, Optional, Union

from wp_healer.core.exceptions import (
    RecordNotFound, RateLimitExceeded, InvalidStateError, CircuitOpenError
)
from wp_healer.core.interfaces import BackupService, JobQueue
from wp_healer.core.models import (
    Target, Execution, ExecutionStatus, DiagnosisType, DiagnosisProfile,
    DiagnosisRecord, TriggerSource, CheckType
)
from wp_healer.core.store import RecordStore
from wp_healer.diagnosis.aggregator import health_status_for
from wp_healer.diagnosis.service import DiagnosisService
from wp_healer.healing.patterns import PatternLearningStore, Suggestion
from wp_healer.healing.safety import CommandSafetyValidator, executable_lines
from wp_healer.utils.resilience import CircuitBreakerService

logger = logging.getLogger(__name__)

HEAL_JOB = 'heal'

# Diagnoses with nothing to remediate unless an operator supplies commands
NON_ACTIONABLE_TYPES = (DiagnosisType.HEALTHY, DiagnosisType.UNKNOWN)
ACTIVE_STATUSES = (
    ExecutionStatus.APPROVED,
    ExecutionStatus.PENDING,
    ExecutionStatus.HEALING,
    ExecutionStatus.VERIFYING
)


class HealingOrchestrator:
    """
    HealingOrchestrator handles:
    - Diagnosis requests with subdomain resolution and cooldown
    - Execution creation enriched with learned pattern suggestions
    - Approval and queueing of healing jobs
    - Rollback to the pre-healing backup
    - Circuit breaker reset and execution history
    """

    def __init__(self,
                 store: RecordStore,
                 diagnosis_service: DiagnosisService,
                 patterns: PatternLearningStore,
                 breaker: CircuitBreakerService,
                 queue: JobQueue,
                 backup_service: BackupService,
                 validator: Optional[CommandSafetyValidator] = None):
        """
        Initialize the orchestrator

        Args:
            store (RecordStore): Record store
            diagnosis_service (DiagnosisService): Runs and caches diagnoses
            patterns (PatternLearningStore): Learned remediation patterns
            breaker (CircuitBreakerService): Per-site circuit breaker
            queue (JobQueue): Queue receiving healing jobs
            backup_service (BackupService): Restores backups on rollback
            validator (CommandSafetyValidator, optional): Denylist for custom commands
        """
        self.store = store
        self.diagnosis_service = diagnosis_service
        self.patterns = patterns
        self.breaker = breaker
        self.queue = queue
        self.backup_service = backup_service
        self.validator = validator or CommandSafetyValidator()

    def _load_site(self, site_id: str) -> Target:
        site = self.store.get('sites', site_id)
        if site is None:
            raise RecordNotFound('Site', site_id)
        return site

    def _load_execution(self, execution_id: str) -> Execution:
        execution = self.store.get('executions', execution_id)
        if execution is None:
            raise RecordNotFound('Execution', execution_id)
        return execution

    def _check_cooldown(self, site: Target):
        if not site.last_diagnosed_at or not site.healing_cooldown:
            return
        elapsed = time.time() - site.last_diagnosed_at
        if elapsed < site.healing_cooldown:
            raise RateLimitExceeded(site.id, site.healing_cooldown - elapsed)

    async def diagnose(self,
                       site_id: str,
                       triggered_by: Optional[str] = None,
                       subdomain: Optional[str] = None,
                       profile: Union[str, DiagnosisProfile] = DiagnosisProfile.LIGHT,
                       trigger: TriggerSource = TriggerSource.MANUAL,
                       custom_checks: Optional[List[Union[str, CheckType]]] = None,
                       bypass_cache: bool = False) -> Dict[str, Any]:
        """
        Diagnose a site and record a DIAGNOSED execution

        Args:
            site_id (str): Site identifier
            triggered_by (str, optional): Operator requesting the diagnosis
            subdomain (str, optional): Subdomain to diagnose instead of the primary domain
            profile (Union[str, DiagnosisProfile]): Diagnosis profile
            trigger (TriggerSource): What triggered the diagnosis
            custom_checks (List, optional): Checks for the CUSTOM profile
            bypass_cache (bool): Ignore cached diagnoses

        Returns:
            Dict[str, Any]: 'execution_id', 'diagnosis' and 'suggestions'

        Raises:
            RecordNotFound: If the site or subdomain is unknown
            RateLimitExceeded: If the site was diagnosed within its cooldown
        """
        logger.info(f"Starting diagnosis for site {site_id}" + (f" (subdomain: {subdomain})" if subdomain else ""))

        site = self._load_site(site_id)
        path = site.path
        domain = site.domain
        if subdomain:
            path = site.find_subdomain_path(subdomain)
            if path is None:
                raise RecordNotFound('Subdomain', subdomain)
            domain = subdomain
            logger.info(f"Using subdomain path: {path}")

        self._check_cooldown(site)

        record = await self.diagnosis_service.diagnose(
            site, profile,
            custom_checks=custom_checks,
            subdomain=subdomain,
            path=path,
            bypass_cache=bypass_cache
        )

        suggestions = self.patterns.suggest(record)
        execution = self._create_execution(site, record, suggestions, trigger, triggered_by, path, domain, subdomain)
        self.store.upsert('executions', execution)

        self._record_site_diagnosis(site_id, record)

        logger.info(f"Diagnosis completed: execution {execution.id} ({record.diagnosis_type.value})")
        return {
            'execution_id': execution.id,
            'diagnosis': record.to_dict(),
            'suggestions': [s.to_dict() for s in suggestions]
        }

    def _create_execution(self,
                          site: Target,
                          record: DiagnosisRecord,
                          suggestions: List[Suggestion],
                          trigger: TriggerSource,
                          triggered_by: Optional[str],
                          path: str,
                          domain: str,
                          subdomain: Optional[str]) -> Execution:
        suggested_commands = record.suggested_commands
        suggested_action = record.suggested_action
        pattern_id = None

        if suggestions:
            best = suggestions[0]
            suggested_commands = best.commands
            suggested_action = best.reasoning
            pattern_id = best.pattern_id
            logger.info(f"Using learned pattern {pattern_id} with {round(best.confidence * 100)}% confidence")

        details = dict(record.details)
        details.update({
            'error_type': record.error_type,
            'culprit': record.culprit,
            'error_message': record.error_message,
            'path': path,
            'domain': domain,
            'subdomain': subdomain,
            'diagnosis_id': record.id,
            'health_score': record.health_score,
            'profile': record.profile.value,
            'pattern_id': pattern_id,
            'pattern_suggestions': [
                {
                    'confidence': s.confidence,
                    'auto_approve': s.auto_approve,
                    'reasoning': s.reasoning
                }
                for s in suggestions
            ]
        })

        execution = Execution(
            site.id,
            trigger,
            triggered_by,
            record.diagnosis_type,
            ExecutionStatus.DIAGNOSED,
            diagnosis_details=details,
            confidence=record.confidence,
            suggested_action=suggested_action,
            suggested_commands=suggested_commands,
            pattern_id=pattern_id,
            max_attempts=site.max_healing_attempts,
            diagnosed_at=time.time()
        )
        execution.add_log('INFO', 'Diagnosis completed' + (f" for subdomain: {subdomain}" if subdomain else ''))
        if suggestions:
            execution.add_log('INFO', f"Found {len(suggestions)} learned pattern(s)")
        return execution

    def _record_site_diagnosis(self, site_id: str, record: DiagnosisRecord):
        site = self._load_site(site_id)
        site.last_diagnosed_at = time.time()
        site.health_score = record.health_score
        site.health_status = health_status_for(record.diagnosis_type, record.health_score)
        self.store.upsert('sites', site)

    async def heal(self, execution_id: str, custom_commands: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Approve an execution and queue its healing job

        Args:
            execution_id (str): Execution identifier
            custom_commands (List[str], optional): Operator commands replacing the default remediation

        Returns:
            Dict[str, Any]: 'execution_id', 'job_id' and 'status' ('QUEUED')

        Raises:
            RecordNotFound: If the execution or its site is unknown
            InvalidStateError: If the execution is not DIAGNOSED, not actionable,
                or the site is already being healed
            UnsafeCommandError: If a custom command is dangerous
            CircuitOpenError: If the breaker refuses an automatic attempt
        """
        logger.info(f"Starting healing for execution {execution_id}")

        execution = self._load_execution(execution_id)
        if execution.status != ExecutionStatus.DIAGNOSED:
            raise InvalidStateError(
                f"Execution {execution_id} is not in DIAGNOSED status",
                execution.status.value
            )

        commands = executable_lines(custom_commands or [])
        if execution.diagnosis_type in NON_ACTIONABLE_TYPES and not commands:
            raise InvalidStateError(
                f"Diagnosis {execution.diagnosis_type.value} has no remediation, provide custom commands",
                execution.status.value
            )

        site = self._load_site(execution.site_id)
        active = self._active_execution(site.id, exclude_id=execution.id)
        if active is not None:
            raise InvalidStateError(
                f"Site {site.id} is already being healed by execution {active.id} ({active.status.value})",
                execution.status.value
            )

        if commands:
            self.validator.validate(commands)
            logger.info(f"Bypassing circuit breaker - {len(commands)} custom commands provided")
        else:
            decision = self.breaker.can_heal(site.id)
            if not decision['allowed']:
                raise CircuitOpenError(site.id, decision.get('reason', 'Circuit breaker is open'))

        execution.status = ExecutionStatus.APPROVED
        execution.approved_at = time.time()
        if commands:
            execution.custom_commands = commands
            execution.add_log('INFO', f"Custom commands provided: {len(commands)} commands")
        execution.add_log('INFO', 'Healing approved')
        self.store.upsert('executions', execution)

        try:
            job_id = await self.queue.enqueue(HEAL_JOB, {
                'execution_id': execution.id,
                'site_id': site.id,
                'diagnosis_type': execution.diagnosis_type.value,
                'custom_commands': commands or None
            })
        except Exception as e:
            logger.error(f"Failed to queue healing for execution {execution_id}: {str(e)}")
            execution.status = ExecutionStatus.FAILED
            execution.error_message = str(e)
            execution.finished_at = time.time()
            execution.add_log('ERROR', f"Failed to queue healing job: {str(e)}")
            self.store.upsert('executions', execution)
            if not commands:
                self.breaker.release_trial(site.id)
            raise

        logger.info(f"Healing job queued: {job_id}")
        return {
            'execution_id': execution.id,
            'job_id': job_id,
            'status': 'QUEUED'
        }

    def _active_execution(self, site_id: str, exclude_id: str) -> Optional[Execution]:
        """Another execution of the site that is approved, queued or still running"""
        active_values = {status.value for status in ACTIVE_STATUSES}
        active = self.store.query(
            'executions',
            lambda d: d['site_id'] == site_id and d['id'] != exclude_id and d['status'] in active_values,
            limit=1
        )
        return active[0] if active else None

    async def rollback(self, execution_id: str) -> Execution:
        """
        Restore the backup taken before an execution's remediation

        Raises:
            RecordNotFound: If the execution or its backup is unknown
            BackupError: If the restore fails
        """
        logger.info(f"Rolling back execution {execution_id}")

        execution = self._load_execution(execution_id)
        if not execution.backup_id:
            raise RecordNotFound('Backup for execution', execution_id)
        backup = self.store.get('backups', execution.backup_id)
        if backup is None:
            raise RecordNotFound('Backup', execution.backup_id)

        try:
            await self.backup_service.restore(backup)
        except Exception as e:
            logger.error(f"Rollback failed for execution {execution_id}: {str(e)}")
            execution.add_log('ERROR', f"Rollback failed: {str(e)}")
            self.store.upsert('executions', execution)
            raise

        execution.status = ExecutionStatus.ROLLED_BACK
        execution.finished_at = time.time()
        execution.add_log('INFO', f"Rolled back to backup {backup.id}")
        self.store.upsert('executions', execution)

        logger.info(f"Rollback completed for execution {execution_id}")
        return execution

    def reset_circuit_breaker(self, site_id: str) -> Dict[str, Any]:
        """Manually close a site's breaker and return its status"""
        self.breaker.reset(site_id)
        return self.breaker.get_status(site_id)

    def get_execution(self, execution_id: str) -> Execution:
        return self._load_execution(execution_id)

    def get_healing_history(self, site_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Executions of a site, most recent first"""
        def matches(document: Dict[str, Any]) -> bool:
            return document['site_id'] == site_id

        executions = self.store.query(
            'executions', matches,
            sort_key=lambda d: d['created_at'], reverse=True,
            offset=(page - 1) * limit, limit=limit
        )
        total = self.store.count('executions', matches)
        return {
            'data': [e.to_dict() for e in executions],
            'pagination': {
                'total': total,
                'page': page,
                'limit': limit,
                'total_pages': math.ceil(total / limit) if limit else 0
            }
        }
