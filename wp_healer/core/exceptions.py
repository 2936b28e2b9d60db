"""
Healer Exceptions
All engine errors inherit from HealerError so callers can catch the whole
family with one except clause.
"""

from typing import Dict, Any, List, Optional


class HealerError(Exception):
    """Base exception for all healer errors"""

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details: Dict[str, Any] = details or {}


class UnknownProfileError(HealerError):
    """Raised when a diagnosis profile name cannot be resolved"""

    def __init__(self, profile: str):
        super().__init__(f"Unknown diagnosis profile: {profile}", {'profile': profile})
        self.profile = profile


class UnknownCheckError(HealerError):
    """Raised when a custom check name is not a known check type"""

    def __init__(self, check: str):
        super().__init__(f"Unknown check type: {check}", {'check': check})
        self.check = check


class RecordNotFound(HealerError):
    """Raised when a site, execution, pattern or backup record does not exist"""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} not found: {record_id}", {'kind': kind, 'id': record_id})
        self.kind = kind
        self.record_id = record_id


class RateLimitExceeded(HealerError):
    """Raised when a site is diagnosed again before its cooldown has elapsed"""

    def __init__(self, site_id: str, retry_after: float):
        super().__init__(
            f"Rate limit exceeded for site {site_id}, retry in {int(retry_after)} seconds",
            {'site_id': site_id, 'retry_after': retry_after}
        )
        self.retry_after = retry_after


class CircuitOpenError(HealerError):
    """Raised when the circuit breaker refuses an automatic healing attempt"""

    def __init__(self, site_id: str, reason: str):
        super().__init__(reason, {'site_id': site_id})
        self.site_id = site_id


class InvalidStateError(HealerError):
    """Raised when an execution is not in the state an operation requires"""

    def __init__(self, message: str, current: Optional[str] = None):
        super().__init__(message, {'current_status': current})
        self.current = current


class UnsafeCommandError(HealerError):
    """Raised when a command batch contains a destructive command"""

    def __init__(self, commands: List[str]):
        super().__init__(
            f"Dangerous command detected: {commands[0]}",
            {'rejected_commands': list(commands)}
        )
        self.commands = list(commands)


class BackupError(HealerError):
    """Raised when a backup cannot be created or restored"""


class RemoteCommandError(HealerError):
    """Raised when a remote command cannot be dispatched or is not allowed"""


class RemediationError(HealerError):
    """Raised when a remediation step fails on the target"""
