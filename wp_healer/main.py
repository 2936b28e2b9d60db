#!/usr/bin/env python3
"""
WP Healer
Command line entry point: wires the diagnosis and healing components and
runs one operation against the sites held in the state file.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Dict, Any, Optional, List

from wp_healer.core.config_manager import ConfigManager
from wp_healer.core.exceptions import HealerError
from wp_healer.core.log_manager import LogManager
from wp_healer.core.models import Target, HealingMode, RetryStrategy, TriggerSource
from wp_healer.core.remote_executor import CommandRunner, SubprocessExecutor
from wp_healer.core.store import RecordStore
from wp_healer.diagnosis.aggregator import DiagnosisAggregator
from wp_healer.diagnosis.cache import DiagnosisCache
from wp_healer.diagnosis.checks.defaults import build_default_registry
from wp_healer.diagnosis.checks.runner import CheckRunner
from wp_healer.diagnosis.log_analysis import LogAnalyzer
from wp_healer.diagnosis.probes import HttpProbe, MaintenanceProbe, IntegrityProbe, DatabaseProbe
from wp_healer.diagnosis.profiles import ProfileResolver
from wp_healer.diagnosis.service import DiagnosisService
from wp_healer.healing.backup import RemoteBackupService
from wp_healer.healing.executor import HealingJobExecutor
from wp_healer.healing.job_queue import AsyncJobQueue
from wp_healer.healing.orchestrator import HealingOrchestrator
from wp_healer.healing.patterns import PatternLearningStore
from wp_healer.healing.runbooks import RunbookDispatcher
from wp_healer.healing.safety import CommandSafetyValidator
from wp_healer.monitoring.metrics import HealingMetrics
from wp_healer.monitoring.verification import VerificationEngine
from wp_healer.utils.resilience import CircuitBreakerService, RetryService

logger = logging.getLogger(__name__)


class WordPressHealer:
    """Builds and owns every engine component"""

    def __init__(self, config_file: Optional[str] = None, console_logging: bool = True):
        self.config = ConfigManager(config_file)

        self.log_manager = LogManager(self.config.get('log_dir', './logs'), self.config.get('log_level', 'INFO'))
        self.log_manager.setup(console=console_logging)

        logger.info("Initializing WP Healer...")

        self.store = RecordStore(self.config.get('state_file'))
        self.store.load_from_file()

        executor = SubprocessExecutor(
            use_ssh=self.config.get('executor.use_ssh', False),
            ssh_user=self.config.get('executor.ssh_user', 'root'),
            ssh_options=self.config.get('executor.ssh_options'),
            hosts=self.config.get('executor.hosts', {})
        )
        self.runner = CommandRunner.from_config(executor, self.config)
        self.http_probe = HttpProbe(self.config.get('diagnosis.http_timeout', 10))

        # Diagnosis
        registry = build_default_registry(self.runner, self.http_probe, self.store, self.config)
        fallback_themes = self.config.get('healing.fallback_themes')
        self.aggregator = DiagnosisAggregator(
            CheckRunner(registry),
            LogAnalyzer(self.runner, self.config.get('diagnosis.log_tail_lines', 100)),
            self.http_probe,
            MaintenanceProbe(self.runner, self.config.get('diagnosis.maintenance_stale_minutes', 10)),
            IntegrityProbe(self.runner),
            DatabaseProbe(self.runner),
            fallback_theme=fallback_themes[0] if fallback_themes else 'twentytwentyfour'
        )
        self.diagnosis_service = DiagnosisService(
            self.aggregator,
            ProfileResolver(overrides=self.config.get('profiles', {})),
            DiagnosisCache(self.store),
            self.store
        )

        # Healing
        self.validator = CommandSafetyValidator()
        self.patterns = PatternLearningStore(self.store)
        self.breaker = CircuitBreakerService.from_config(self.store, self.config)
        self.retry = RetryService(self.store, self.breaker)
        self.backup_service = RemoteBackupService.from_config(self.runner, self.store, self.config)
        self.queue = AsyncJobQueue.from_config(self.store, self.config)
        self.verification = VerificationEngine.from_config(self.runner, self.http_probe, self.config)

        self.executor = HealingJobExecutor(
            self.store,
            RunbookDispatcher(self.runner, self.validator, fallback_themes),
            self.backup_service,
            self.verification,
            self.patterns,
            self.breaker,
            self.retry,
            self.queue,
            job_timeout=self.config.get('healing.job_timeout', 600)
        )
        self.executor.register(self.queue)

        self.orchestrator = HealingOrchestrator(
            self.store,
            self.diagnosis_service,
            self.patterns,
            self.breaker,
            self.queue,
            self.backup_service,
            self.validator
        )
        self.metrics = HealingMetrics(self.store)

        logger.info("WP Healer initialized")

    def add_site(self, args) -> Dict[str, Any]:
        subdomains = []
        for entry in args.subdomain or []:
            name, _, path = entry.partition('=')
            subdomains.append({'subdomain': name, 'path': path})

        site = Target(
            args.site_id,
            args.domain,
            args.path,
            args.server or args.site_id,
            subdomains=subdomains,
            healing_mode=HealingMode(args.mode),
            max_healing_attempts=args.max_attempts,
            healing_cooldown=args.cooldown,
            blacklisted_plugins=args.blacklist_plugin,
            blacklisted_themes=args.blacklist_theme,
            retry_strategy=RetryStrategy(args.retry_strategy)
        )
        self.store.upsert('sites', site)
        return site.to_dict()

    async def heal(self, execution_id: str, custom_commands: Optional[List[str]]) -> Dict[str, Any]:
        """Queue a healing job and wait for it and any retries it schedules"""
        await self.queue.start()
        try:
            queued = await self.orchestrator.heal(execution_id, custom_commands)
            await self.queue.join()
        finally:
            await self.queue.stop()
        return {
            'queued': queued,
            'execution': self.orchestrator.get_execution(execution_id).to_dict()
        }

    async def run_command(self, args) -> Any:
        if args.command == 'add-site':
            return self.add_site(args)
        if args.command == 'diagnose':
            return await self.orchestrator.diagnose(
                args.site_id,
                triggered_by=args.user,
                subdomain=args.subdomain,
                profile=args.profile,
                trigger=TriggerSource.MANUAL,
                custom_checks=args.check,
                bypass_cache=args.no_cache
            )
        if args.command == 'heal':
            return await self.heal(args.execution_id, args.cmd)
        if args.command == 'rollback':
            return (await self.orchestrator.rollback(args.execution_id)).to_dict()
        if args.command == 'reset-breaker':
            return self.orchestrator.reset_circuit_breaker(args.site_id)
        if args.command == 'history':
            return self.orchestrator.get_healing_history(args.site_id, args.page, args.limit)
        if args.command == 'profiles':
            return self.diagnosis_service.available_profiles()
        if args.command == 'patterns':
            return self.patterns.get_all_patterns(args.page, args.limit)
        if args.command == 'metrics':
            return self.metrics.get_metrics(args.site_id, args.days * 86400)
        raise ValueError(f"Unknown command: {args.command}")

    def shutdown(self):
        self.store.save_to_file()
        logger.info("WP Healer shutdown complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='WordPress diagnosis and self-healing engine')
    parser.add_argument('--config', type=str, help='Path to configuration file')
    parser.add_argument('--quiet', action='store_true', help='Do not log to the console')
    commands = parser.add_subparsers(dest='command', required=True)

    add_site = commands.add_parser('add-site', help='Register a site')
    add_site.add_argument('site_id')
    add_site.add_argument('domain')
    add_site.add_argument('path')
    add_site.add_argument('--server', help='Remote execution handle, defaults to the site id')
    add_site.add_argument('--subdomain', action='append', help='name=path, repeatable')
    add_site.add_argument('--mode', default='MANUAL', choices=[m.value for m in HealingMode])
    add_site.add_argument('--max-attempts', type=int, default=3)
    add_site.add_argument('--cooldown', type=int, default=1800, help='Seconds between diagnoses')
    add_site.add_argument('--blacklist-plugin', action='append')
    add_site.add_argument('--blacklist-theme', action='append')
    add_site.add_argument('--retry-strategy', default='EXPONENTIAL', choices=[s.value for s in RetryStrategy])

    diagnose = commands.add_parser('diagnose', help='Diagnose a site')
    diagnose.add_argument('site_id')
    diagnose.add_argument('--subdomain')
    diagnose.add_argument('--profile', default='LIGHT')
    diagnose.add_argument('--check', action='append', help='Check type for the CUSTOM profile, repeatable')
    diagnose.add_argument('--no-cache', action='store_true')
    diagnose.add_argument('--user', help='Operator requesting the diagnosis')

    heal = commands.add_parser('heal', help='Heal a diagnosed execution')
    heal.add_argument('execution_id')
    heal.add_argument('--cmd', action='append', help='Custom command, repeatable')

    rollback = commands.add_parser('rollback', help='Restore the backup of an execution')
    rollback.add_argument('execution_id')

    reset = commands.add_parser('reset-breaker', help='Reset the circuit breaker of a site')
    reset.add_argument('site_id')

    history = commands.add_parser('history', help='Healing history of a site')
    history.add_argument('site_id')
    history.add_argument('--page', type=int, default=1)
    history.add_argument('--limit', type=int, default=20)

    commands.add_parser('profiles', help='List diagnosis profiles')

    patterns = commands.add_parser('patterns', help='List learned patterns')
    patterns.add_argument('--page', type=int, default=1)
    patterns.add_argument('--limit', type=int, default=50)

    metrics = commands.add_parser('metrics', help='Healing metrics')
    metrics.add_argument('--site-id')
    metrics.add_argument('--days', type=int, default=1)

    return parser


async def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    healer = WordPressHealer(args.config, console_logging=not args.quiet)
    try:
        result = await healer.run_command(args)
    except HealerError as e:
        logger.error(f"{args.command} failed: {str(e)}")
        print(json.dumps({'error': str(e), 'details': e.details}, indent=2, default=str))
        return 1
    finally:
        healer.shutdown()

    print(json.dumps(result, indent=2, default=str))
    return 0


def main():
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
