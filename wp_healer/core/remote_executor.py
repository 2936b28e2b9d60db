"""
Remote Command Execution
CommandRunner bounds concurrency and timeouts around any RemoteExecutor and
provides the wp-cli helper. SubprocessExecutor runs commands locally or
through the ssh binary.
"""

import asyncio
import logging
import re
import shlex
import time
from typing import Dict, Any, List, Optional

from wp_healer.core.exceptions import RemoteCommandError
from wp_healer.core.interfaces import RemoteExecutor
from wp_healer.core.models import CommandResult

logger = logging.getLogger(__name__)

# wp-cli sub-commands that may be issued by the engine
WP_CLI_ALLOWED_COMMANDS = [
    'plugin',
    'theme',
    'config',
    'db',
    'core',
    'cache',
    'transient',
    'option'
]


class CommandRunner:
    """
    Bounded front-end for a RemoteExecutor:
    - At most max_concurrent commands in flight
    - Fixed spacing between dispatched commands
    - Timeouts and transport errors returned as failed CommandResults
    """

    def __init__(self,
                 executor: RemoteExecutor,
                 max_concurrent: int = 5,
                 command_delay_ms: int = 100,
                 default_timeout_ms: int = 30000,
                 wp_cli_timeout_ms: int = 120000):
        """
        Initialize the CommandRunner

        Args:
            executor (RemoteExecutor): Underlying transport
            max_concurrent (int): Maximum concurrent commands
            command_delay_ms (int): Delay after acquiring a slot, before dispatch
            default_timeout_ms (int): Default command timeout
            wp_cli_timeout_ms (int): Default timeout for wp-cli commands
        """
        self.executor = executor
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.command_delay_ms = command_delay_ms
        self.default_timeout_ms = default_timeout_ms
        self.wp_cli_timeout_ms = wp_cli_timeout_ms
        self.stats = {
            'executed': 0,
            'failed': 0,
            'timed_out': 0
        }

    @classmethod
    def from_config(cls, executor: RemoteExecutor, config) -> 'CommandRunner':
        return cls(
            executor,
            max_concurrent=config.get('executor.max_concurrent', 5),
            command_delay_ms=config.get('executor.command_delay_ms', 100),
            default_timeout_ms=config.get('executor.default_timeout_ms', 30000),
            wp_cli_timeout_ms=config.get('executor.wp_cli_timeout_ms', 120000)
        )

    async def run(self, target_id: str, command: str, timeout_ms: Optional[int] = None) -> CommandResult:
        """
        Run a command on a target

        Args:
            target_id (str): Remote execution handle
            command (str): Shell command
            timeout_ms (int, optional): Timeout, defaults to default_timeout_ms

        Returns:
            CommandResult: Never raises for timeouts or transport failures
        """
        timeout_ms = timeout_ms or self.default_timeout_ms
        async with self.semaphore:
            if self.command_delay_ms:
                await asyncio.sleep(self.command_delay_ms / 1000)

            start = time.time()
            self.stats['executed'] += 1
            try:
                result = await asyncio.wait_for(
                    self.executor.exec(target_id, command, timeout_ms),
                    timeout=timeout_ms / 1000
                )
            except asyncio.TimeoutError:
                self.stats['timed_out'] += 1
                logger.warning(f"Command timed out after {timeout_ms}ms on {target_id}: {command}")
                return CommandResult(
                    success=False,
                    error=f"Command timeout after {timeout_ms}ms",
                    duration=(time.time() - start) * 1000
                )
            except (OSError, RemoteCommandError) as e:
                self.stats['failed'] += 1
                logger.error(f"Command failed on {target_id}: {str(e)}")
                return CommandResult(success=False, error=str(e), duration=(time.time() - start) * 1000)

            if not result.success:
                self.stats['failed'] += 1
            return result

    async def output(self, target_id: str, command: str, timeout_ms: Optional[int] = None) -> str:
        """Run a command and return its combined output, empty on failure"""
        result = await self.run(target_id, command, timeout_ms)
        return result.output if result.output else (result.error or '')

    async def wp(self, target_id: str, site_path: str, command: str,
                 timeout_ms: Optional[int] = None) -> CommandResult:
        """
        Run a wp-cli command inside a site directory

        Args:
            target_id (str): Remote execution handle
            site_path (str): WordPress root
            command (str): wp-cli command without the leading 'wp'
            timeout_ms (int, optional): Timeout, defaults to wp_cli_timeout_ms

        Returns:
            CommandResult: Command result

        Raises:
            RemoteCommandError: If the wp-cli sub-command is not allowed
        """
        sanitized = sanitize_wp_command(command)
        full_command = f"cd {site_path} && wp {sanitized} --allow-root"
        logger.info(f"Executing wp-cli: {full_command}")
        return await self.run(target_id, full_command, timeout_ms or self.wp_cli_timeout_ms)

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)


def sanitize_wp_command(command: str) -> str:
    """
    Validate and sanitize a wp-cli command

    Args:
        command (str): wp-cli command without the leading 'wp'

    Returns:
        str: Sanitized command

    Raises:
        RemoteCommandError: If the command is empty or its sub-command is not allowed
    """
    if not command or not command.strip():
        raise RemoteCommandError("Command cannot be empty")

    main_command = command.strip().split(' ')[0]
    if main_command not in WP_CLI_ALLOWED_COMMANDS:
        raise RemoteCommandError(f"Command not allowed: {main_command}")

    sanitized = re.sub(r'[;&|`$()]', '', command)
    sanitized = sanitized.replace('..', '')
    return sanitized.strip()


class SubprocessExecutor(RemoteExecutor):
    """
    RemoteExecutor backed by asyncio subprocesses.

    With use_ssh the command is sent through the ssh binary to the host named
    by the target id, otherwise it runs in a local shell.
    """

    def __init__(self, use_ssh: bool = False, ssh_user: str = 'root',
                 ssh_options: Optional[List[str]] = None,
                 hosts: Optional[Dict[str, str]] = None):
        """
        Initialize the executor

        Args:
            use_ssh (bool): Dispatch through ssh
            ssh_user (str): Remote user
            ssh_options (List[str], optional): Extra ssh arguments
            hosts (Dict[str, str], optional): Map of target id to host name
        """
        self.use_ssh = use_ssh
        self.ssh_user = ssh_user
        self.ssh_options = ssh_options or []
        self.hosts = hosts or {}

    async def exec(self, target_id: str, command: str, timeout_ms: int) -> CommandResult:
        start = time.time()
        if self.use_ssh:
            host = self.hosts.get(target_id, target_id)
            argv = ['ssh', *self.ssh_options, f"{self.ssh_user}@{host}", command]
            logger.debug(f"ssh {host}: {command}")
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        else:
            logger.debug(f"local: {shlex.quote(command)}")
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise

        output = stdout.decode('utf-8', errors='replace').strip()
        error = stderr.decode('utf-8', errors='replace').strip()
        return CommandResult(
            success=process.returncode == 0,
            output=output,
            error=error or None,
            exit_code=process.returncode,
            duration=(time.time() - start) * 1000
        )
