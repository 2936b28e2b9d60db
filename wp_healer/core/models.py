"""
Healer Data Model
Enumerations and record classes shared by diagnosis and healing components.
Records are plain classes that serialize to dictionaries for the record store.
"""

import time
import uuid
from enum import Enum
from typing import Dict, Any, List, Optional


def new_id() -> str:
    """Generate a new record identifier"""
    return uuid.uuid4().hex


class CheckType(Enum):
    """Health check types"""
    HTTP_STATUS = "HTTP_STATUS"
    MAINTENANCE_MODE = "MAINTENANCE_MODE"
    DATABASE_CONNECTION = "DATABASE_CONNECTION"
    WP_VERSION = "WP_VERSION"
    CORE_INTEGRITY = "CORE_INTEGRITY"
    PHP_ERRORS = "PHP_ERRORS"
    APACHE_NGINX_LOGS = "APACHE_NGINX_LOGS"
    DISK_SPACE = "DISK_SPACE"
    FILE_PERMISSIONS = "FILE_PERMISSIONS"
    HTACCESS = "HTACCESS"
    WP_CONFIG = "WP_CONFIG"
    MEMORY_LIMIT = "MEMORY_LIMIT"
    SSL_CERTIFICATE = "SSL_CERTIFICATE"
    PLUGIN_STATUS = "PLUGIN_STATUS"
    THEME_STATUS = "THEME_STATUS"
    UPDATE_STATUS = "UPDATE_STATUS"
    MALWARE_SCAN = "MALWARE_SCAN"
    PERFORMANCE_METRICS = "PERFORMANCE_METRICS"
    SECURITY_AUDIT = "SECURITY_AUDIT"
    SEO_HEALTH = "SEO_HEALTH"
    BACKUP_STATUS = "BACKUP_STATUS"
    RESOURCE_USAGE = "RESOURCE_USAGE"
    MALWARE_DETECTION = "MALWARE_DETECTION"
    DATABASE_HEALTH = "DATABASE_HEALTH"
    RESOURCE_MONITORING = "RESOURCE_MONITORING"
    PLUGIN_THEME_ANALYSIS = "PLUGIN_THEME_ANALYSIS"
    UPTIME_MONITORING = "UPTIME_MONITORING"
    LOG_ANALYSIS = "LOG_ANALYSIS"


class CheckStatus(Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARNING = "WARNING"
    SKIPPED = "SKIPPED"
    ERROR = "ERROR"


class CheckPriority(Enum):
    """Check priority, lower value means more important"""
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class DiagnosisProfile(Enum):
    FULL = "FULL"
    LIGHT = "LIGHT"
    QUICK = "QUICK"
    CUSTOM = "CUSTOM"


class DiagnosisType(Enum):
    """Primary failure classes produced by causal diagnosis"""
    WSOD = "WSOD"
    MAINTENANCE = "MAINTENANCE"
    INTEGRITY = "INTEGRITY"
    PERMISSION = "PERMISSION"
    CACHE = "CACHE"
    PLUGIN_CONFLICT = "PLUGIN_CONFLICT"
    THEME_CONFLICT = "THEME_CONFLICT"
    MEMORY_EXHAUSTION = "MEMORY_EXHAUSTION"
    DB_ERROR = "DB_ERROR"
    SYNTAX_ERROR = "SYNTAX_ERROR"
    HEALTHY = "HEALTHY"
    UNKNOWN = "UNKNOWN"


class ExecutionStatus(Enum):
    PENDING = "PENDING"
    DIAGNOSED = "DIAGNOSED"
    APPROVED = "APPROVED"
    HEALING = "HEALING"
    VERIFYING = "VERIFYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


class CircuitBreakerState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class RetryStrategy(Enum):
    IMMEDIATE = "IMMEDIATE"
    LINEAR = "LINEAR"
    EXPONENTIAL = "EXPONENTIAL"
    FIBONACCI = "FIBONACCI"


class HealingMode(Enum):
    MANUAL = "MANUAL"
    SEMI_AUTO = "SEMI_AUTO"
    FULL_AUTO = "FULL_AUTO"


class HealthStatus(Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"
    MAINTENANCE = "MAINTENANCE"
    UNKNOWN = "UNKNOWN"


class TriggerSource(Enum):
    MANUAL = "MANUAL"
    SEARCH = "SEARCH"
    AUTO = "AUTO"


class BackupType(Enum):
    FILE = "FILE"
    DATABASE = "DATABASE"
    FULL = "FULL"


def _enum_value(value):
    return value.value if isinstance(value, Enum) else value


class Target:
    """A remediable WordPress site and its healing configuration"""

    def __init__(self,
                 id: str,
                 domain: str,
                 path: str,
                 server_id: str,
                 subdomains: Optional[List[Dict[str, str]]] = None,
                 healing_mode: HealingMode = HealingMode.MANUAL,
                 max_healing_attempts: int = 3,
                 healing_cooldown: int = 1800,
                 blacklisted_plugins: Optional[List[str]] = None,
                 blacklisted_themes: Optional[List[str]] = None,
                 retry_strategy: RetryStrategy = RetryStrategy.EXPONENTIAL,
                 retry_base_delay_ms: int = 1000,
                 is_healer_enabled: bool = True):
        """
        Initialize a target

        Args:
            id (str): Site identifier
            domain (str): Primary domain
            path (str): Filesystem root of the WordPress install
            server_id (str): Handle passed to the remote executor
            subdomains (List[Dict[str, str]], optional): Entries with 'subdomain' and 'path'
            healing_mode (HealingMode): Approval mode
            max_healing_attempts (int): Consecutive failures before the breaker opens
            healing_cooldown (int): Minimum seconds between diagnoses
            blacklisted_plugins (List[str], optional): Plugins never touched, 'prefix*' allowed
            blacklisted_themes (List[str], optional): Themes never activated
            retry_strategy (RetryStrategy): Backoff strategy for retries
            retry_base_delay_ms (int): Base delay for backoff
            is_healer_enabled (bool): Whether automatic healing is enabled
        """
        self.id = id
        self.domain = domain
        self.path = path
        self.server_id = server_id
        self.subdomains = subdomains or []
        self.healing_mode = healing_mode
        self.max_healing_attempts = max_healing_attempts
        self.healing_cooldown = healing_cooldown
        self.blacklisted_plugins = blacklisted_plugins or []
        self.blacklisted_themes = blacklisted_themes or []
        self.retry_strategy = retry_strategy
        self.retry_base_delay_ms = retry_base_delay_ms
        self.is_healer_enabled = is_healer_enabled

        self.health_score: Optional[int] = None
        self.health_status = HealthStatus.UNKNOWN
        self.circuit_breaker_state = CircuitBreakerState.CLOSED
        self.circuit_breaker_reset_at: Optional[float] = None
        self.last_circuit_breaker_open: Optional[float] = None
        self.half_open_trial = False
        self.consecutive_failures = 0
        self.healing_attempts = 0
        self.last_diagnosed_at: Optional[float] = None
        self.last_healed_at: Optional[float] = None

    def find_subdomain_path(self, subdomain: str) -> Optional[str]:
        """Return the filesystem path of a subdomain, or None if unknown"""
        for entry in self.subdomains:
            if entry.get('subdomain') == subdomain:
                return entry.get('path')
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'domain': self.domain,
            'path': self.path,
            'server_id': self.server_id,
            'subdomains': list(self.subdomains),
            'healing_mode': self.healing_mode.value,
            'max_healing_attempts': self.max_healing_attempts,
            'healing_cooldown': self.healing_cooldown,
            'blacklisted_plugins': list(self.blacklisted_plugins),
            'blacklisted_themes': list(self.blacklisted_themes),
            'retry_strategy': self.retry_strategy.value,
            'retry_base_delay_ms': self.retry_base_delay_ms,
            'is_healer_enabled': self.is_healer_enabled,
            'health_score': self.health_score,
            'health_status': self.health_status.value,
            'circuit_breaker_state': self.circuit_breaker_state.value,
            'circuit_breaker_reset_at': self.circuit_breaker_reset_at,
            'last_circuit_breaker_open': self.last_circuit_breaker_open,
            'half_open_trial': self.half_open_trial,
            'consecutive_failures': self.consecutive_failures,
            'healing_attempts': self.healing_attempts,
            'last_diagnosed_at': self.last_diagnosed_at,
            'last_healed_at': self.last_healed_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Target':
        target = cls(
            id=data['id'],
            domain=data['domain'],
            path=data['path'],
            server_id=data.get('server_id', data['id']),
            subdomains=data.get('subdomains'),
            healing_mode=HealingMode(data.get('healing_mode', 'MANUAL')),
            max_healing_attempts=data.get('max_healing_attempts', 3),
            healing_cooldown=data.get('healing_cooldown', 1800),
            blacklisted_plugins=data.get('blacklisted_plugins'),
            blacklisted_themes=data.get('blacklisted_themes'),
            retry_strategy=RetryStrategy(data.get('retry_strategy', 'EXPONENTIAL')),
            retry_base_delay_ms=data.get('retry_base_delay_ms', 1000),
            is_healer_enabled=data.get('is_healer_enabled', True)
        )
        target.health_score = data.get('health_score')
        target.health_status = HealthStatus(data.get('health_status', 'UNKNOWN'))
        target.circuit_breaker_state = CircuitBreakerState(data.get('circuit_breaker_state', 'CLOSED'))
        target.circuit_breaker_reset_at = data.get('circuit_breaker_reset_at')
        target.last_circuit_breaker_open = data.get('last_circuit_breaker_open')
        target.half_open_trial = data.get('half_open_trial', False)
        target.consecutive_failures = data.get('consecutive_failures', 0)
        target.healing_attempts = data.get('healing_attempts', 0)
        target.last_diagnosed_at = data.get('last_diagnosed_at')
        target.last_healed_at = data.get('last_healed_at')
        return target


class CheckResult:
    """Verdict of a single health check"""

    def __init__(self,
                 check_type: CheckType,
                 status: CheckStatus,
                 score: int,
                 message: str,
                 details: Optional[Dict[str, Any]] = None,
                 recommendations: Optional[List[str]] = None,
                 duration: float = 0,
                 priority: CheckPriority = CheckPriority.MEDIUM,
                 timestamp: Optional[float] = None):
        self.check_type = check_type
        self.status = status
        self.score = max(0, min(100, int(score)))
        self.message = message
        self.details = details or {}
        self.recommendations = recommendations or []
        self.duration = duration
        self.priority = priority
        self.timestamp = timestamp if timestamp is not None else time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'check_type': self.check_type.value,
            'status': self.status.value,
            'score': self.score,
            'message': self.message,
            'details': self.details,
            'recommendations': list(self.recommendations),
            'duration': self.duration,
            'priority': self.priority.name,
            'timestamp': self.timestamp
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CheckResult':
        return cls(
            check_type=CheckType(data['check_type']),
            status=CheckStatus(data['status']),
            score=data['score'],
            message=data.get('message', ''),
            details=data.get('details'),
            recommendations=data.get('recommendations'),
            duration=data.get('duration', 0),
            priority=CheckPriority[data.get('priority', 'MEDIUM')],
            timestamp=data.get('timestamp')
        )


class DiagnosisRecord:
    """Aggregated outcome of one diagnosis run"""

    def __init__(self, site_id: str, profile: DiagnosisProfile, **fields):
        self.id: str = fields.get('id') or new_id()
        self.site_id = site_id
        self.profile = profile
        self.checks_run: List[str] = fields.get('checks_run', [])
        self.health_score: int = fields.get('health_score', 100)
        self.issues_found: int = fields.get('issues_found', 0)
        self.critical_issues: int = fields.get('critical_issues', 0)
        self.warning_issues: int = fields.get('warning_issues', 0)
        self.diagnosis_type: DiagnosisType = fields.get('diagnosis_type', DiagnosisType.UNKNOWN)
        self.confidence: float = fields.get('confidence', 0.0)
        self.error_type: Optional[str] = fields.get('error_type')
        self.culprit: Optional[str] = fields.get('culprit')
        self.error_message: Optional[str] = fields.get('error_message')
        self.suggested_action: str = fields.get('suggested_action', '')
        self.suggested_commands: List[str] = fields.get('suggested_commands', [])
        self.check_results: List[CheckResult] = fields.get('check_results', [])
        self.category_scores: Dict[str, int] = fields.get('category_scores', {})
        self.log_files_checked: List[str] = fields.get('log_files_checked', [])
        self.details: Dict[str, Any] = fields.get('details', {})
        self.http_status: int = fields.get('http_status', 0)
        self.response_time: float = fields.get('response_time', 0)
        self.duration: float = fields.get('duration', 0)
        self.cached: bool = fields.get('cached', False)
        self.cache_expires_at: Optional[float] = fields.get('cache_expires_at')
        self.subdomain: Optional[str] = fields.get('subdomain')
        self.domain: Optional[str] = fields.get('domain')
        self.path: Optional[str] = fields.get('path')
        self.created_at: float = fields.get('created_at') or time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'site_id': self.site_id,
            'profile': self.profile.value,
            'checks_run': list(self.checks_run),
            'health_score': self.health_score,
            'issues_found': self.issues_found,
            'critical_issues': self.critical_issues,
            'warning_issues': self.warning_issues,
            'diagnosis_type': self.diagnosis_type.value,
            'confidence': self.confidence,
            'error_type': self.error_type,
            'culprit': self.culprit,
            'error_message': self.error_message,
            'suggested_action': self.suggested_action,
            'suggested_commands': list(self.suggested_commands),
            'check_results': [r.to_dict() for r in self.check_results],
            'category_scores': dict(self.category_scores),
            'log_files_checked': list(self.log_files_checked),
            'details': self.details,
            'http_status': self.http_status,
            'response_time': self.response_time,
            'duration': self.duration,
            'cached': self.cached,
            'cache_expires_at': self.cache_expires_at,
            'subdomain': self.subdomain,
            'domain': self.domain,
            'path': self.path,
            'created_at': self.created_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiagnosisRecord':
        fields = dict(data)
        site_id = fields.pop('site_id')
        profile = DiagnosisProfile(fields.pop('profile'))
        fields['diagnosis_type'] = DiagnosisType(fields.get('diagnosis_type', 'UNKNOWN'))
        fields['check_results'] = [CheckResult.from_dict(r) for r in fields.get('check_results', [])]
        return cls(site_id, profile, **fields)


class Execution:
    """One remediation lifecycle instance driven through the healing state machine"""

    def __init__(self,
                 site_id: str,
                 trigger: TriggerSource,
                 triggered_by: Optional[str],
                 diagnosis_type: DiagnosisType,
                 status: ExecutionStatus = ExecutionStatus.DIAGNOSED,
                 **fields):
        self.id: str = fields.get('id') or new_id()
        self.site_id = site_id
        self.trigger = trigger
        self.triggered_by = triggered_by
        self.diagnosis_type = diagnosis_type
        self.status = status
        self.diagnosis_details: Dict[str, Any] = fields.get('diagnosis_details', {})
        self.confidence: float = fields.get('confidence', 0.0)
        self.suggested_action: str = fields.get('suggested_action', '')
        self.suggested_commands: List[str] = fields.get('suggested_commands', [])
        self.pattern_id: Optional[str] = fields.get('pattern_id')
        self.custom_commands: Optional[List[str]] = fields.get('custom_commands')
        self.attempt_number: int = fields.get('attempt_number', 1)
        self.max_attempts: int = fields.get('max_attempts', 3)
        self.previous_attempt_id: Optional[str] = fields.get('previous_attempt_id')
        self.retry_reason: Optional[str] = fields.get('retry_reason')
        self.backup_id: Optional[str] = fields.get('backup_id')
        self.verification_score: Optional[int] = fields.get('verification_score')
        self.verification_results: Optional[Dict[str, Any]] = fields.get('verification_results')
        self.verification_checks: List[Dict[str, Any]] = fields.get('verification_checks', [])
        self.error_message: Optional[str] = fields.get('error_message')
        self.diagnosed_at: Optional[float] = fields.get('diagnosed_at')
        self.approved_at: Optional[float] = fields.get('approved_at')
        self.started_at: Optional[float] = fields.get('started_at')
        self.finished_at: Optional[float] = fields.get('finished_at')
        self.verified_at: Optional[float] = fields.get('verified_at')
        self.duration: Optional[float] = fields.get('duration')
        self.logs: List[Dict[str, Any]] = list(fields.get('logs', []))
        self.created_at: float = fields.get('created_at') or time.time()

    def add_log(self, level: str, message: str):
        """Append an entry to the execution log"""
        self.logs.append({
            'timestamp': time.time(),
            'level': level,
            'message': message
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'site_id': self.site_id,
            'trigger': self.trigger.value,
            'triggered_by': self.triggered_by,
            'diagnosis_type': self.diagnosis_type.value,
            'status': self.status.value,
            'diagnosis_details': self.diagnosis_details,
            'confidence': self.confidence,
            'suggested_action': self.suggested_action,
            'suggested_commands': list(self.suggested_commands),
            'pattern_id': self.pattern_id,
            'custom_commands': self.custom_commands,
            'attempt_number': self.attempt_number,
            'max_attempts': self.max_attempts,
            'previous_attempt_id': self.previous_attempt_id,
            'retry_reason': self.retry_reason,
            'backup_id': self.backup_id,
            'verification_score': self.verification_score,
            'verification_results': self.verification_results,
            'verification_checks': list(self.verification_checks),
            'error_message': self.error_message,
            'diagnosed_at': self.diagnosed_at,
            'approved_at': self.approved_at,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'verified_at': self.verified_at,
            'duration': self.duration,
            'logs': list(self.logs),
            'created_at': self.created_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Execution':
        fields = dict(data)
        site_id = fields.pop('site_id')
        trigger = TriggerSource(fields.pop('trigger'))
        triggered_by = fields.pop('triggered_by', None)
        diagnosis_type = DiagnosisType(fields.pop('diagnosis_type'))
        status = ExecutionStatus(fields.pop('status'))
        return cls(site_id, trigger, triggered_by, diagnosis_type, status, **fields)


class HealingPattern:
    """A learned fingerprint to remedy mapping"""

    def __init__(self,
                 diagnosis_type: DiagnosisType,
                 commands: List[str],
                 description: str = '',
                 error_type: Optional[str] = None,
                 culprit: Optional[str] = None,
                 error_pattern: str = '.*',
                 verified: bool = False,
                 **fields):
        self.id: str = fields.get('id') or new_id()
        self.diagnosis_type = diagnosis_type
        self.error_type = error_type
        self.culprit = culprit
        self.error_pattern = error_pattern
        self.commands = list(commands)
        self.description = description
        self.verified = verified
        self.success_count: int = fields.get('success_count', 0)
        self.failure_count: int = fields.get('failure_count', 0)
        self.confidence: float = fields.get('confidence', 0.0)
        self.auto_approve: bool = fields.get('auto_approve', False)
        self.last_used_at: Optional[float] = fields.get('last_used_at')
        self.last_success_at: Optional[float] = fields.get('last_success_at')
        self.last_failure_at: Optional[float] = fields.get('last_failure_at')
        self.created_at: float = fields.get('created_at') or time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'diagnosis_type': self.diagnosis_type.value,
            'error_type': self.error_type,
            'culprit': self.culprit,
            'error_pattern': self.error_pattern,
            'commands': list(self.commands),
            'description': self.description,
            'verified': self.verified,
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'confidence': self.confidence,
            'auto_approve': self.auto_approve,
            'last_used_at': self.last_used_at,
            'last_success_at': self.last_success_at,
            'last_failure_at': self.last_failure_at,
            'created_at': self.created_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingPattern':
        fields = dict(data)
        diagnosis_type = DiagnosisType(fields.pop('diagnosis_type'))
        commands = fields.pop('commands')
        return cls(diagnosis_type, commands, **fields)


class CacheEntry:
    """Cached diagnosis keyed by site, path, domain and profile"""

    def __init__(self,
                 site_id: str,
                 path: str,
                 domain: str,
                 profile: DiagnosisProfile,
                 result: Dict[str, Any],
                 health_score: int,
                 expires_at: float,
                 hit_count: int = 0,
                 last_accessed_at: Optional[float] = None):
        self.site_id = site_id
        self.path = path
        self.domain = domain
        self.profile = profile
        self.result = result
        self.health_score = health_score
        self.expires_at = expires_at
        self.hit_count = hit_count
        self.last_accessed_at = last_accessed_at if last_accessed_at is not None else time.time()

    @property
    def key(self) -> str:
        return cache_key(self.site_id, self.path, self.domain, self.profile)

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'site_id': self.site_id,
            'path': self.path,
            'domain': self.domain,
            'profile': self.profile.value,
            'result': self.result,
            'health_score': self.health_score,
            'expires_at': self.expires_at,
            'hit_count': self.hit_count,
            'last_accessed_at': self.last_accessed_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntry':
        fields = dict(data)
        fields['profile'] = DiagnosisProfile(fields['profile'])
        return cls(**fields)


def cache_key(site_id: str, path: str, domain: str, profile: DiagnosisProfile) -> str:
    """Natural key of a cache entry"""
    return f"{site_id}|{path}|{domain}|{_enum_value(profile)}"


class BackupRef:
    """Reference to a backup created before remediation"""

    def __init__(self,
                 site_id: str,
                 backup_type: BackupType,
                 file_path: str,
                 status: str = 'COMPLETED',
                 size: int = 0,
                 metadata: Optional[Dict[str, Any]] = None,
                 id: Optional[str] = None,
                 created_at: Optional[float] = None):
        self.id = id or new_id()
        self.site_id = site_id
        self.backup_type = backup_type
        self.file_path = file_path
        self.status = status
        self.size = size
        self.metadata = metadata or {}
        self.created_at = created_at if created_at is not None else time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'site_id': self.site_id,
            'backup_type': self.backup_type.value,
            'file_path': self.file_path,
            'status': self.status,
            'size': self.size,
            'metadata': self.metadata,
            'created_at': self.created_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupRef':
        fields = dict(data)
        fields['backup_type'] = BackupType(fields['backup_type'])
        return cls(**fields)


class CommandResult:
    """Captured outcome of one remote command"""

    def __init__(self,
                 success: bool,
                 output: str = '',
                 error: Optional[str] = None,
                 exit_code: Optional[int] = None,
                 duration: float = 0):
        self.success = success
        self.output = output
        self.error = error
        self.exit_code = exit_code
        self.duration = duration

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'output': self.output,
            'error': self.error,
            'exit_code': self.exit_code,
            'duration': self.duration
        }
