"""
Pattern Learning Store
Learns which remediation commands fix which failure fingerprints and
suggests them, with confidence, for new diagnoses.
"""

import logging
import math
import re
import time
from typing import Dict, Any, List, Optional

from wp_healer.core.exceptions import RecordNotFound
from wp_healer.core.models import (
    DiagnosisRecord, DiagnosisType, Execution, ExecutionStatus, HealingPattern
)
from wp_healer.core.store import RecordStore

logger = logging.getLogger(__name__)

AUTO_APPROVE_CONFIDENCE = 0.9
AUTO_APPROVE_MIN_SUCCESSES = 5
MIN_MATCH_SCORE = 0.5


def extract_error_pattern(error_message: Optional[str]) -> str:
    """
    Normalize an error message into a regex fingerprint

    File paths become '/[PATH].php', line numbers 'line [NUM]' and any other
    number '[NUM]'; the result is regex-escaped. An empty message yields '.*'.
    """
    if not error_message:
        return '.*'
    pattern = re.sub(r'/[^\s]+\.php', '/[PATH].php', error_message)
    pattern = re.sub(r'line \d+', 'line [NUM]', pattern, flags=re.IGNORECASE)
    pattern = re.sub(r'\d+', '[NUM]', pattern)
    return re.escape(pattern)


def _compile_fingerprint(error_pattern: str) -> Optional['re.Pattern']:
    # Placeholders match the concrete values they replaced
    expression = error_pattern.replace(r'\[PATH\]', r'[^\s]+').replace(r'\[NUM\]', r'\d+')
    try:
        return re.compile(expression, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Invalid error pattern {error_pattern!r}: {str(e)}")
        return None


def confidence_of(success_count: int, failure_count: int) -> float:
    total = success_count + failure_count
    return success_count / total if total else 0.0


def is_auto_approved(confidence: float, success_count: int) -> bool:
    return confidence > AUTO_APPROVE_CONFIDENCE and success_count >= AUTO_APPROVE_MIN_SUCCESSES


def reasoning_for(pattern: HealingPattern) -> str:
    """Human readable explanation of a suggestion"""
    total = pattern.success_count + pattern.failure_count
    percentage = round(pattern.confidence * 100)

    if pattern.auto_approve:
        return (f"Auto-approved: This solution has worked {pattern.success_count}/{total} times "
                f"({percentage}% success rate)")
    if pattern.success_count == 0:
        return 'New pattern - not yet tested'
    if pattern.success_count < 3:
        return (f"Learning: This solution has worked {pattern.success_count}/{total} times. "
                f"Need more data for auto-approval.")
    remaining = max(0, AUTO_APPROVE_MIN_SUCCESSES - pattern.success_count)
    return (f"Suggested: This solution has worked {pattern.success_count}/{total} times "
            f"({percentage}% success rate). {remaining} more successes needed for auto-approval.")


class Suggestion:
    """A remedy proposed from a learned pattern"""

    def __init__(self, pattern_id: str, commands: List[str], confidence: float,
                 auto_approve: bool, reasoning: str, match_score: float):
        self.pattern_id = pattern_id
        self.commands = list(commands)
        self.confidence = confidence
        self.auto_approve = auto_approve
        self.reasoning = reasoning
        self.match_score = match_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern_id': self.pattern_id,
            'commands': list(self.commands),
            'confidence': self.confidence,
            'auto_approve': self.auto_approve,
            'reasoning': self.reasoning,
            'match_score': self.match_score
        }


class PatternLearningStore:
    """
    PatternLearningStore handles:
    - Fingerprinting of diagnoses
    - Suggestion ranking by match score and confidence
    - Success/failure accounting with auto-approval
    - Pattern administration
    """

    TABLE = 'patterns'

    def __init__(self, store: RecordStore):
        self.store = store

    def suggest(self, diagnosis: DiagnosisRecord) -> List[Suggestion]:
        """
        Suggest remedies for a diagnosis

        Args:
            diagnosis (DiagnosisRecord): Diagnosis to match

        Returns:
            List[Suggestion]: Matches scoring above 0.5, best first
        """
        candidates = self.store.query(
            self.TABLE,
            lambda d: d['diagnosis_type'] == diagnosis.diagnosis_type.value and d['error_type'] == diagnosis.error_type
        )
        if not candidates:
            logger.debug('No matching patterns found for diagnosis')
            return []

        matches = []
        for pattern in candidates:
            score = self._match_score(pattern, diagnosis.culprit, diagnosis.error_message)
            if score > MIN_MATCH_SCORE:
                matches.append(Suggestion(
                    pattern.id, pattern.commands, pattern.confidence,
                    pattern.auto_approve, reasoning_for(pattern), score
                ))

        matches.sort(key=lambda s: s.match_score * s.confidence, reverse=True)
        return matches

    def _match_score(self, pattern: HealingPattern, culprit: Optional[str],
                     error_message: Optional[str]) -> float:
        score = 1.0
        if pattern.culprit and culprit:
            score = 1.0 if pattern.culprit == culprit else 0.5
        if pattern.error_pattern and error_message:
            regex = _compile_fingerprint(pattern.error_pattern)
            if regex is not None and regex.search(error_message):
                score *= 1.2
            else:
                score *= 0.7
        return score

    def learn_from_success(self, execution_id: str) -> Optional[HealingPattern]:
        """
        Credit the pattern of a successful execution, creating it if new

        Args:
            execution_id (str): Execution identifier

        Returns:
            Optional[HealingPattern]: Updated pattern, None if the execution did not succeed
        """
        execution = self.store.get('executions', execution_id)
        if execution is None:
            logger.warning(f"Execution {execution_id} not found")
            return None
        if execution.status != ExecutionStatus.SUCCESS:
            logger.debug(f"Skipping learning from non-successful execution {execution_id}")
            return None

        fingerprint = self._fingerprint(execution)
        commands = self._commands_of(execution)
        pattern = self._find(fingerprint, commands)
        if pattern is None:
            pattern = HealingPattern(
                fingerprint['diagnosis_type'],
                commands,
                description=execution.suggested_action,
                error_type=fingerprint['error_type'],
                culprit=fingerprint['culprit'],
                error_pattern=fingerprint['error_pattern']
            )

        now = time.time()
        pattern.success_count += 1
        pattern.confidence = confidence_of(pattern.success_count, pattern.failure_count)
        pattern.auto_approve = is_auto_approved(pattern.confidence, pattern.success_count)
        pattern.last_success_at = now
        pattern.last_used_at = now
        self.store.upsert(self.TABLE, pattern)

        logger.info(f"Learned from execution {execution_id}, pattern {pattern.id} "
                    f"now has {pattern.success_count} successes")
        return pattern

    def record_failure(self, execution_id: str) -> Optional[HealingPattern]:
        """Debit the matching pattern of a failed execution, if one exists"""
        execution = self.store.get('executions', execution_id)
        if execution is None:
            return None

        pattern = self._find(self._fingerprint(execution), self._commands_of(execution))
        if pattern is None:
            return None

        pattern.failure_count += 1
        pattern.confidence = confidence_of(pattern.success_count, pattern.failure_count)
        pattern.auto_approve = is_auto_approved(pattern.confidence, pattern.success_count)
        pattern.last_failure_at = time.time()
        pattern.last_used_at = pattern.last_failure_at
        self.store.upsert(self.TABLE, pattern)

        logger.info(f"Recorded failure for pattern {pattern.id} (confidence {pattern.confidence:.2f})")
        return pattern

    def _fingerprint(self, execution: Execution) -> Dict[str, Any]:
        details = execution.diagnosis_details or {}
        return {
            'diagnosis_type': execution.diagnosis_type,
            'error_type': details.get('error_type'),
            'culprit': details.get('culprit'),
            'error_pattern': extract_error_pattern(details.get('error_message'))
        }

    def _commands_of(self, execution: Execution) -> List[str]:
        return list(execution.custom_commands or execution.suggested_commands or [])

    def _find(self, fingerprint: Dict[str, Any], commands: List[str]) -> Optional[HealingPattern]:
        diagnosis_type: DiagnosisType = fingerprint['diagnosis_type']
        matches = self.store.query(
            self.TABLE,
            lambda d: (d['diagnosis_type'] == diagnosis_type.value
                       and d['error_type'] == fingerprint['error_type']
                       and d['culprit'] == fingerprint['culprit']
                       and d['commands'] == commands),
            sort_key=lambda d: d['created_at'],
            limit=1
        )
        return matches[0] if matches else None

    def get_all_patterns(self, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        """Patterns for review, ordered by confidence then successes"""
        patterns = self.store.query(
            self.TABLE,
            sort_key=lambda d: (d['confidence'], d['success_count']),
            reverse=True,
            offset=(page - 1) * limit,
            limit=limit
        )
        total = self.store.count(self.TABLE)
        return {
            'data': [p.to_dict() for p in patterns],
            'pagination': {
                'total': total,
                'page': page,
                'limit': limit,
                'total_pages': math.ceil(total / limit) if limit else 0
            }
        }

    def delete_pattern(self, pattern_id: str):
        if not self.store.delete(self.TABLE, pattern_id):
            raise RecordNotFound('Pattern', pattern_id)
        logger.info(f"Deleted pattern {pattern_id}")

    def set_pattern_approval(self, pattern_id: str, approved: bool) -> HealingPattern:
        """Manually override a pattern's auto-approval flag"""
        pattern = self.store.get(self.TABLE, pattern_id)
        if pattern is None:
            raise RecordNotFound('Pattern', pattern_id)
        pattern.auto_approve = approved
        self.store.upsert(self.TABLE, pattern)
        logger.info(f"Set pattern {pattern_id} auto-approval to {approved}")
        return pattern
