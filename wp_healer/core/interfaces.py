"""
Collaborator Interfaces
Abstract interfaces for the remote transport, backups, checks and job
submission that the engine consumes.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from wp_healer.core.models import (
    Target, CheckResult, CheckType, CheckPriority, BackupRef, BackupType, CommandResult
)


class RemoteExecutor(ABC):
    """Transport that runs a shell command on the server hosting a site"""

    @abstractmethod
    async def exec(self, target_id: str, command: str, timeout_ms: int) -> CommandResult:
        """
        Run a command on the target's server

        Args:
            target_id (str): Remote execution handle
            command (str): Shell command
            timeout_ms (int): Timeout in milliseconds

        Returns:
            CommandResult: Captured output and exit information
        """
        pass


class BackupService(ABC):
    """Creates and restores backups of a site"""

    @abstractmethod
    async def create_backup(self, target: Target, kind: BackupType) -> BackupRef:
        """Create a backup, raising BackupError on failure"""
        pass

    @abstractmethod
    async def restore(self, backup: BackupRef) -> None:
        """Restore a backup, raising BackupError on failure"""
        pass


class Check(ABC):
    """A pluggable probe producing a scored verdict on one health dimension"""

    check_type: CheckType

    @abstractmethod
    def priority(self) -> CheckPriority:
        pass

    @abstractmethod
    async def check(self, target: Target, path: str, domain: str) -> CheckResult:
        pass


class JobQueue(ABC):
    """Asynchronous, delay-capable job submission"""

    @abstractmethod
    async def enqueue(self, job_name: str, payload: Dict[str, Any],
                      delay_ms: int = 0, job_id: Optional[str] = None) -> str:
        """
        Submit a job

        Args:
            job_name (str): Registered job name
            payload (Dict[str, Any]): Job payload
            delay_ms (int): Delay before the job becomes runnable
            job_id (str, optional): Explicit job identifier

        Returns:
            str: Job handle
        """
        pass
