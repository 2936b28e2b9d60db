"""
Healing Metrics
Aggregates execution history into diagnosis, healing and learning metrics.
"""

import logging
import time
from typing import Dict, Any, List, Optional

import numpy as np

from wp_healer.core.models import ExecutionStatus, DiagnosisType
from wp_healer.core.store import RecordStore

logger = logging.getLogger(__name__)

FINISHED_STATUSES = (ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.ROLLED_BACK)


def _mean(values: List[float]) -> Optional[float]:
    return float(np.mean(values)) if values else None


class HealingMetrics:
    """Computes metrics over the executions table"""

    def __init__(self, store: RecordStore, success_rate_alert_threshold: float = 0.7):
        self.store = store
        self.success_rate_alert_threshold = success_rate_alert_threshold

    def get_metrics(self, site_id: Optional[str] = None, period_seconds: int = 86400) -> Dict[str, Any]:
        """
        Compute metrics for executions created within a period

        Args:
            site_id (str, optional): Restrict to one site
            period_seconds (int): Length of the period ending now

        Returns:
            Dict[str, Any]: Diagnosis counts, healing outcomes, timings and rates
        """
        period_end = time.time()
        period_start = period_end - period_seconds

        def matches(document: Dict[str, Any]) -> bool:
            if site_id is not None and document['site_id'] != site_id:
                return False
            return period_start <= document['created_at'] < period_end

        executions = self.store.query('executions', matches)

        by_type = {t.value: 0 for t in DiagnosisType}
        for execution in executions:
            by_type[execution.diagnosis_type.value] += 1

        finished = [e for e in executions if e.status in FINISHED_STATUSES]
        successful = [e for e in executions if e.status == ExecutionStatus.SUCCESS]
        failed = [e for e in executions if e.status == ExecutionStatus.FAILED]
        rolled_back = [e for e in executions if e.status == ExecutionStatus.ROLLED_BACK]

        # Milliseconds from creation to diagnosis and from approval to finish
        diagnosis_times = [
            (e.diagnosed_at - e.created_at) * 1000 for e in executions if e.diagnosed_at
        ]
        healing_times = [
            (e.finished_at - e.approved_at) * 1000
            for e in executions if e.finished_at and e.approved_at
        ]
        verification_scores = [e.verification_score for e in executions if e.verification_score is not None]

        first_attempt_successes = [e for e in successful if e.attempt_number == 1]
        with_pattern = [e for e in finished if e.pattern_id]
        pattern_successes = [e for e in with_pattern if e.status == ExecutionStatus.SUCCESS]

        success_rate = len(successful) / len(finished) if finished else None
        metrics = {
            'site_id': site_id,
            'period_start': period_start,
            'period_end': period_end,
            'total_diagnoses': len(executions),
            'by_diagnosis_type': by_type,
            'total_healings': len(finished),
            'successful_healings': len(successful),
            'failed_healings': len(failed),
            'rolled_back_healings': len(rolled_back),
            'healing_success_rate': success_rate,
            'first_attempt_success_rate': len(first_attempt_successes) / len(finished) if finished else None,
            'avg_diagnosis_time': _mean(diagnosis_times),
            'avg_healing_time': _mean(healing_times),
            'avg_verification_score': _mean(verification_scores),
            'patterns_applied': len(with_pattern),
            'pattern_success_rate': len(pattern_successes) / len(with_pattern) if with_pattern else None,
            'patterns_learned': self.store.count(
                'patterns', lambda d: period_start <= d['created_at'] < period_end
            )
        }

        if success_rate is not None and success_rate < self.success_rate_alert_threshold:
            self.store.create_alert(
                'healing_metrics',
                'ERROR',
                f"Healing success rate is {success_rate * 100:.1f}% "
                f"({len(successful)}/{len(finished)} successful)"
            )

        logger.debug(f"Metrics computed: {len(executions)} diagnoses, {len(finished)} healings")
        return metrics
