"""
Remote Backup Service
Creates file and database backups on the site's server before remediation
and restores them on rollback.
"""

import logging
import time
from typing import Dict, Any, Tuple

from wp_healer.core.exceptions import BackupError
from wp_healer.core.interfaces import BackupService
from wp_healer.core.models import Target, BackupRef, BackupType
from wp_healer.core.remote_executor import CommandRunner
from wp_healer.core.store import RecordStore

logger = logging.getLogger(__name__)

FILES_TO_BACKUP = [
    'wp-config.php',
    '.htaccess',
    'wp-content/plugins',
    'wp-content/themes',
    'wp-content/mu-plugins'
]


class RemoteBackupService(BackupService):
    """
    BackupService over the remote command runner.

    Archives live under <root_dir>/<site_id>/ on the site's server. Every
    attempt is recorded in the 'backups' table, failed ones with status FAILED.
    """

    def __init__(self, runner: CommandRunner, store: RecordStore,
                 root_dir: str = '/var/backups/healer', timeout_ms: int = 600000):
        """
        Initialize the backup service

        Args:
            runner (CommandRunner): Remote command runner
            store (RecordStore): Record store for backup references
            root_dir (str): Backup root on the remote server
            timeout_ms (int): Timeout for archive and dump commands
        """
        self.runner = runner
        self.store = store
        self.root_dir = root_dir.rstrip('/')
        self.timeout_ms = timeout_ms

    @classmethod
    def from_config(cls, runner: CommandRunner, store: RecordStore, config) -> 'RemoteBackupService':
        return cls(
            runner,
            store,
            root_dir=config.get('backup.root_dir', '/var/backups/healer'),
            timeout_ms=config.get('backup.timeout_ms', 600000)
        )

    def backup_dir(self, target: Target) -> str:
        return f"{self.root_dir}/{target.id}"

    async def create_backup(self, target: Target, kind: BackupType) -> BackupRef:
        """
        Create a backup of a site

        Args:
            target (Target): Site to back up, its path may point at a subdomain
            kind (BackupType): FILE, DATABASE or FULL

        Returns:
            BackupRef: Stored backup reference

        Raises:
            BackupError: If any step fails
        """
        logger.info(f"Creating {kind.value} backup for site {target.id}")
        base_name = f"{target.id}_{int(time.time() * 1000)}"

        try:
            await self._run(target, f"mkdir -p {self.backup_dir(target)}", 'create backup directory')

            if kind == BackupType.FILE:
                file_path, size, metadata = await self._backup_files(target, base_name)
            elif kind == BackupType.DATABASE:
                file_path, size, metadata = await self._backup_database(target, base_name)
            else:
                file_path, files_size, files_meta = await self._backup_files(target, f"{base_name}_files")
                db_path, db_size, db_meta = await self._backup_database(target, f"{base_name}_db")
                size = files_size + db_size
                metadata = {'files': files_meta, 'database': db_meta}
        except BackupError as e:
            logger.error(f"Backup creation failed for site {target.id}: {str(e)}")
            self.store.upsert('backups', BackupRef(
                target.id, kind, '', status='FAILED', metadata={'error': str(e)}
            ))
            raise

        backup = BackupRef(target.id, kind, file_path, size=size, metadata=metadata)
        self.store.upsert('backups', backup)
        logger.info(f"Backup created: {backup.id} ({size} bytes)")
        return backup

    async def _run(self, target: Target, command: str, step: str) -> str:
        result = await self.runner.run(target.server_id, command, self.timeout_ms)
        if not result.success:
            raise BackupError(f"Failed to {step}: {result.error or result.output}", {'command': command})
        return result.output

    async def _size_of(self, target: Target, path: str) -> int:
        output = await self._run(target, f"stat -c %s {path}", 'read backup size')
        try:
            return int(output.strip())
        except ValueError:
            raise BackupError(f"Unreadable size for {path}: {output}")

    async def _backup_files(self, target: Target, name: str) -> Tuple[str, int, Dict[str, Any]]:
        archive = f"{self.backup_dir(target)}/{name}.tar.gz"
        await self._run(
            target,
            f"cd {target.path} && tar -czf {archive} --ignore-failed-read {' '.join(FILES_TO_BACKUP)} 2>/dev/null; "
            f"test -s {archive}",
            'archive site files'
        )
        size = await self._size_of(target, archive)
        return archive, size, {'files': list(FILES_TO_BACKUP), 'site_path': target.path, 'archive': archive}

    async def _backup_database(self, target: Target, name: str) -> Tuple[str, int, Dict[str, Any]]:
        dump = f"{self.backup_dir(target)}/{name}.sql"
        result = await self.runner.wp(target.server_id, target.path, f"db export {dump}", self.timeout_ms)
        if not result.success:
            raise BackupError(f"Failed to export database: {result.error or result.output}")
        size = await self._size_of(target, dump)
        return dump, size, {'dump': dump, 'site_path': target.path}

    async def restore(self, backup: BackupRef) -> None:
        """
        Restore a backup

        Raises:
            BackupError: If the backup is unusable or a restore step fails
        """
        if backup.status != 'COMPLETED':
            raise BackupError(f"Backup {backup.id} is not restorable (status {backup.status})")

        target = self.store.get('sites', backup.site_id)
        if target is None:
            raise BackupError(f"Site {backup.site_id} of backup {backup.id} not found")

        site_path = self._site_path_of(backup, target.path)
        target.path = site_path
        logger.info(f"Restoring {backup.backup_type.value} backup {backup.id} to {site_path}")

        archive = self._archive_of(backup)
        if archive:
            await self._run(target, f"tar -xzf {archive} -C {site_path}", 'extract file archive')

        dump = self._dump_of(backup)
        if dump:
            result = await self.runner.wp(target.server_id, site_path, f"db import {dump}", self.timeout_ms)
            if not result.success:
                raise BackupError(f"Failed to import database: {result.error or result.output}")

        logger.info(f"Backup {backup.id} restored")

    def _site_path_of(self, backup: BackupRef, default: str) -> str:
        metadata = backup.metadata
        for section in (metadata, metadata.get('files') or {}, metadata.get('database') or {}):
            if section.get('site_path'):
                return section['site_path']
        return default

    def _archive_of(self, backup: BackupRef) -> str:
        if backup.backup_type == BackupType.DATABASE:
            return ''
        if backup.backup_type == BackupType.FULL:
            return (backup.metadata.get('files') or {}).get('archive', backup.file_path)
        return backup.metadata.get('archive', backup.file_path)

    def _dump_of(self, backup: BackupRef) -> str:
        if backup.backup_type == BackupType.FILE:
            return ''
        if backup.backup_type == BackupType.FULL:
            return (backup.metadata.get('database') or {}).get('dump', '')
        return backup.metadata.get('dump', backup.file_path)
