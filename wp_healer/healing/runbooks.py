"""
Remediation Runbooks
Concrete remediation procedures selected by diagnosis type, plus the
custom-command path that replaces them when an operator supplies commands.
"""

import logging
from typing import Dict, Any, List, Optional

from wp_healer.core.exceptions import RemediationError, RemoteCommandError
from wp_healer.core.models import Target, Execution, DiagnosisType
from wp_healer.core.remote_executor import CommandRunner
from wp_healer.diagnosis.probes import find_wsod_indicator, MIN_HEALTHY_BODY_SIZE
from wp_healer.healing.safety import CommandSafetyValidator, executable_lines

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_THEMES = [
    'twentytwentyfour',
    'twentytwentythree',
    'twentytwentytwo',
    'twentytwentyone',
    'twentytwenty'
]


def is_blacklisted(name: Optional[str], blacklist: List[str]) -> bool:
    """Exact match, or prefix match for entries ending in '*'"""
    if not name or not blacklist:
        return False
    for entry in blacklist:
        if entry == name:
            return True
        if entry.endswith('*') and name.startswith(entry[:-1]):
            return True
    return False


class HealingContext:
    """Everything a runbook needs for one execution"""

    def __init__(self, target: Target, execution: Execution, path: str, domain: str,
                 custom_commands: Optional[List[str]] = None):
        """
        Args:
            target (Target): Site being healed
            execution (Execution): Execution being processed
            path (str): Filesystem path of the (sub)site being healed
            domain (str): Domain of the (sub)site being healed
            custom_commands (List[str], optional): Operator commands replacing the default remediation
        """
        self.target = target
        self.execution = execution
        self.path = path
        self.domain = domain
        self.custom_commands = custom_commands or []

    @property
    def details(self) -> Dict[str, Any]:
        return self.execution.diagnosis_details or {}


class RemediationResult:
    """Outcome of a runbook execution"""

    def __init__(self, action: str, details: Optional[Dict[str, Any]] = None,
                 commands: Optional[List[str]] = None):
        self.success = True
        self.action = action
        self.details = details or {}
        self.commands = commands or []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'action': self.action,
            'details': self.details,
            'commands': list(self.commands)
        }


class Runbook:
    """
    Base runbook.

    execute() raises RemediationError when the remediation cannot be applied;
    verify() answers whether the site looks fixed.
    """

    name = 'runbook'

    def __init__(self, runner: CommandRunner, validator: Optional[CommandSafetyValidator] = None):
        self.runner = runner
        self.validator = validator or CommandSafetyValidator()

    async def execute(self, context: HealingContext) -> RemediationResult:
        if context.custom_commands:
            return await self.execute_custom_commands(context, context.custom_commands)
        return await self._remediate(context)

    async def _remediate(self, context: HealingContext) -> RemediationResult:
        raise NotImplementedError

    async def verify(self, context: HealingContext) -> bool:
        return await self.verify_site_response(context)

    async def _wp(self, context: HealingContext, command: str) -> str:
        try:
            result = await self.runner.wp(context.target.server_id, context.path, command)
        except RemoteCommandError as e:
            raise RemediationError(str(e))
        if not result.success:
            raise RemediationError(f"wp {command} failed: {result.error or result.output}")
        return result.output

    async def _shell(self, context: HealingContext, command: str) -> str:
        result = await self.runner.run(context.target.server_id, command)
        if not result.success:
            raise RemediationError(f"{command} failed: {result.error or result.output}")
        return result.output

    async def execute_custom_commands(self, context: HealingContext, commands: List[str]) -> RemediationResult:
        """
        Run operator or learned commands in order

        The batch is validated as a whole first; 'wp ...' lines go through
        wp-cli, anything else runs in the site directory.

        Raises:
            UnsafeCommandError: If any command is dangerous, before anything runs
            RemediationError: On the first failing command
        """
        lines = executable_lines(commands)
        self.validator.validate(lines)
        logger.info(f"Executing {len(lines)} commands on {context.domain}")

        executed = []
        results = []
        for command in lines:
            logger.info(f"Executing command: {command}")
            try:
                if command.lower().startswith('wp '):
                    output = await self._wp(context, command[3:].strip())
                else:
                    output = await self._shell(context, f"cd {context.path} && {command}")
            except RemediationError as e:
                raise RemediationError(f"Command failed: {command}\nError: {str(e)}",
                                       {'executed': executed})
            executed.append(command)
            results.append(f"{command}: {output or 'Success'}")

        return RemediationResult(
            f"Executed {len(executed)} commands",
            {'results': results},
            executed
        )

    async def verify_site_response(self, context: HealingContext) -> bool:
        """Fetch the site from its server and require a 200 with real content"""
        domain = context.domain
        status_line = await self.runner.output(
            context.target.server_id,
            f"curl -s -o /dev/null -w \"%{{http_code}}|%{{size_download}}\" -L \"https://{domain}\" || "
            f"curl -s -o /dev/null -w \"%{{http_code}}|%{{size_download}}\" -L \"http://{domain}\""
        )
        status, _, size = status_line.strip().partition('|')
        try:
            size_bytes = int(float(size or 0))
        except ValueError:
            size_bytes = 0

        logger.info(f"Site verification for {domain}: HTTP {status}, Size: {size_bytes} bytes")
        if status != '200' or size_bytes <= MIN_HEALTHY_BODY_SIZE:
            logger.warning(f"Site verification failed for {domain}: HTTP {status}, Size: {size_bytes}")
            return False

        content = await self.runner.output(
            context.target.server_id,
            f"curl -s -L \"https://{domain}\" || curl -s -L \"http://{domain}\""
        )
        indicator = find_wsod_indicator(content)
        if indicator:
            logger.warning(f"Site returns 200 but contains failure content: {indicator}")
            return False
        return True


class WsodRunbook(Runbook):
    """Plugin deactivation, theme fallback or safe mode"""

    name = 'wsod'

    def __init__(self, runner: CommandRunner, validator: Optional[CommandSafetyValidator] = None,
                 fallback_themes: Optional[List[str]] = None):
        super().__init__(runner, validator)
        self.fallback_themes = fallback_themes or DEFAULT_FALLBACK_THEMES

    async def _remediate(self, context: HealingContext) -> RemediationResult:
        error_type = context.details.get('error_type')
        culprit = context.details.get('culprit')

        if error_type == 'PLUGIN_FAULT' and culprit:
            return await self.heal_plugin_fault(context, culprit)
        if error_type == 'THEME_FAULT' and culprit:
            return await self.heal_theme_fault(context, culprit)
        return await self.activate_safe_mode(context)

    async def heal_plugin_fault(self, context: HealingContext, plugin: str) -> RemediationResult:
        if is_blacklisted(plugin, context.target.blacklisted_plugins):
            raise RemediationError(f"Plugin {plugin} is blacklisted and cannot be deactivated")

        logger.info(f"Deactivating faulty plugin: {plugin}")
        await self._wp(context, f"plugin deactivate {plugin}")
        return RemediationResult(
            f"Deactivated faulty plugin: {plugin}",
            {'plugin': plugin},
            [f"wp plugin deactivate {plugin}"]
        )

    async def heal_theme_fault(self, context: HealingContext, theme: str) -> RemediationResult:
        candidates = [
            t for t in self.fallback_themes
            if t != theme and not is_blacklisted(t, context.target.blacklisted_themes)
        ]

        last_error = None
        for candidate in candidates:
            logger.info(f"Attempting to activate theme: {candidate}")
            try:
                await self._wp(context, f"theme activate {candidate}")
            except RemediationError as e:
                logger.warning(f"Failed to activate {candidate}: {str(e)}")
                last_error = e
                continue

            logger.info(f"Successfully activated theme: {candidate}")
            return RemediationResult(
                f"Switched to fallback theme: {candidate}",
                {'old_theme': theme, 'new_theme': candidate},
                [f"wp theme activate {candidate}"]
            )

        raise RemediationError(
            f"Failed to activate any fallback theme. Last error: {str(last_error) if last_error else 'no candidates'}"
        )

    async def activate_safe_mode(self, context: HealingContext) -> RemediationResult:
        logger.info('Activating safe mode - deactivating all plugins')
        await self._wp(context, 'plugin deactivate --all')
        return RemediationResult(
            'Activated safe mode: deactivated all plugins',
            {'mode': 'safe'},
            ['wp plugin deactivate --all']
        )


class MaintenanceRunbook(Runbook):
    """Removes a stuck .maintenance lock"""

    name = 'maintenance'

    async def _remediate(self, context: HealingContext) -> RemediationResult:
        maintenance_file = f"{context.path}/.maintenance"
        await self._shell(context, f"rm -f {maintenance_file}")
        return RemediationResult(
            'Removed stuck .maintenance file',
            {'file': maintenance_file},
            [f"rm -f {maintenance_file}"]
        )

    async def verify(self, context: HealingContext) -> bool:
        output = await self.runner.output(
            context.target.server_id,
            f"test -f {context.path}/.maintenance && echo \"exists\" || echo \"not found\""
        )
        return 'exists' not in output


class SuggestedCommandsRunbook(Runbook):
    """Runs the diagnosis' suggested commands (memory, database, core integrity)"""

    name = 'suggested_commands'

    async def _remediate(self, context: HealingContext) -> RemediationResult:
        commands = context.execution.suggested_commands
        if not executable_lines(commands):
            raise RemediationError(
                f"No remediation commands for {context.execution.diagnosis_type.value}"
            )
        return await self.execute_custom_commands(context, commands)


class RunbookDispatcher:
    """Maps diagnosis types to runbooks"""

    def __init__(self, runner: CommandRunner, validator: Optional[CommandSafetyValidator] = None,
                 fallback_themes: Optional[List[str]] = None):
        validator = validator or CommandSafetyValidator()
        self.wsod = WsodRunbook(runner, validator, fallback_themes)
        self.maintenance = MaintenanceRunbook(runner, validator)
        self.suggested = SuggestedCommandsRunbook(runner, validator)
        self._by_type = {
            DiagnosisType.WSOD: self.wsod,
            DiagnosisType.SYNTAX_ERROR: self.wsod,
            DiagnosisType.PLUGIN_CONFLICT: self.wsod,
            DiagnosisType.THEME_CONFLICT: self.wsod,
            DiagnosisType.MAINTENANCE: self.maintenance,
            DiagnosisType.MEMORY_EXHAUSTION: self.suggested,
            DiagnosisType.DB_ERROR: self.suggested,
            DiagnosisType.INTEGRITY: self.suggested
        }

    def select(self, diagnosis_type: DiagnosisType, has_custom_commands: bool = False) -> Runbook:
        """
        Pick the runbook for a diagnosis

        Raises:
            RemediationError: If the type has no runbook and no custom commands were given
        """
        runbook = self._by_type.get(diagnosis_type)
        if runbook is not None:
            return runbook
        if has_custom_commands:
            return self.suggested
        raise RemediationError(f"Unsupported diagnosis type: {diagnosis_type.value}")
