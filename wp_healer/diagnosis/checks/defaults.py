"""
Default Check Set
Builds the registry of concrete checks used by the diagnosis service.
"""

from wp_healer.diagnosis.checks.runner import CheckRegistry
from wp_healer.diagnosis.checks.server_checks import (
    ApacheNginxLogsCheck, DiskSpaceCheck, FilePermissionsCheck, MemoryLimitCheck, SslCertificateCheck
)
from wp_healer.diagnosis.checks.site_checks import (
    HttpStatusCheck, MaintenanceModeCheck, DatabaseConnectionCheck, WpVersionCheck,
    CoreIntegrityCheck, PhpErrorsCheck, WpConfigCheck, HtaccessCheck, PluginStatusCheck,
    ThemeStatusCheck, UpdateStatusCheck, BackupStatusCheck
)


def build_default_registry(runner, http_probe, store=None, config=None) -> CheckRegistry:
    """
    Register every built-in check

    Args:
        runner (CommandRunner): Remote command runner
        http_probe (HttpProbe): HTTP content probe
        store (RecordStore, optional): Record store, used for backup records
        config (ConfigManager, optional): Configuration

    Returns:
        CheckRegistry: Populated registry
    """
    stale_minutes = config.get('diagnosis.maintenance_stale_minutes', 10) if config else 10
    backup_root = config.get('backup.root_dir', '/var/backups/healer') if config else '/var/backups/healer'

    registry = CheckRegistry()
    for check in (
        HttpStatusCheck(runner, http_probe),
        MaintenanceModeCheck(runner, stale_minutes),
        DatabaseConnectionCheck(runner),
        WpVersionCheck(runner),
        CoreIntegrityCheck(runner),
        PhpErrorsCheck(runner),
        ApacheNginxLogsCheck(runner),
        DiskSpaceCheck(runner),
        FilePermissionsCheck(runner),
        HtaccessCheck(runner),
        WpConfigCheck(runner),
        MemoryLimitCheck(runner),
        SslCertificateCheck(runner),
        PluginStatusCheck(runner),
        ThemeStatusCheck(runner),
        UpdateStatusCheck(runner),
        BackupStatusCheck(runner, store, backup_root)
    ):
        registry.register(check)
    return registry
