"""Tests for configuration loading and the record store."""

from __future__ import annotations

import json

import yaml

from wp_healer.core.config_manager import ConfigManager
from wp_healer.core.models import DiagnosisType, Execution, ExecutionStatus, Target, TriggerSource
from wp_healer.core.store import RecordStore


class TestConfigManager:
    """Defaults, files, environment and validation."""

    def test_defaults(self) -> None:
        config = ConfigManager(search_default_paths=False)

        assert config.get('healing.workers') == 2
        assert config.get('healing.job_timeout') == 600
        assert config.get('healing.fallback_themes')[0] == 'twentytwentyfour'
        assert config.get('executor.max_concurrent') == 5
        assert config.get('missing.key', 'fallback') == 'fallback'

    def test_yaml_file_is_deep_merged(self, tmp_path) -> None:
        path = tmp_path / 'healer.yaml'
        path.write_text(yaml.safe_dump({'healing': {'workers': 6}, 'profiles': {'LIGHT': {'cache_ttl': 30}}}))

        config = ConfigManager(str(path), search_default_paths=False)

        assert config.get('healing.workers') == 6
        assert config.get('healing.job_timeout') == 600
        assert config.get('profiles.LIGHT.cache_ttl') == 30

    def test_json_file(self, tmp_path) -> None:
        path = tmp_path / 'healer.json'
        path.write_text(json.dumps({'backup': {'root_dir': '/srv/backups'}}))

        assert ConfigManager(str(path), search_default_paths=False).get('backup.root_dir') == '/srv/backups'

    def test_environment_overrides_file(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / 'healer.yaml'
        path.write_text(yaml.safe_dump({'healing': {'workers': 6}}))
        monkeypatch.setenv('HEALER_WORKERS', '4')
        monkeypatch.setenv('HEALER_USE_SSH', 'yes')
        monkeypatch.setenv('HEALER_JOB_TIMEOUT', '90.5')
        monkeypatch.setenv('HEALER_SSH_USER', 'deploy')

        config = ConfigManager(str(path), search_default_paths=False)

        assert config.get('healing.workers') == 4
        assert config.get('executor.use_ssh') is True
        assert config.get('healing.job_timeout') == 90.5
        assert config.get('executor.ssh_user') == 'deploy'

    def test_invalid_pool_sizes_are_reset(self, monkeypatch) -> None:
        monkeypatch.setenv('HEALER_WORKERS', '0')
        monkeypatch.setenv('HEALER_MAX_CONCURRENT', '0')

        config = ConfigManager(search_default_paths=False)

        assert config.get('healing.workers') == 1
        assert config.get('executor.max_concurrent') == 1

    def test_unreadable_file_keeps_defaults(self, tmp_path) -> None:
        path = tmp_path / 'healer.yaml'
        path.write_text('healing: [unclosed')

        assert ConfigManager(str(path), search_default_paths=False).get('healing.workers') == 2

    def test_save_to_file_round_trips(self, tmp_path) -> None:
        config = ConfigManager(search_default_paths=False)
        config.set('diagnosis.default_profile', 'QUICK')
        path = tmp_path / 'out' / 'healer.yaml'

        assert config.save_to_file(str(path)) is True
        assert ConfigManager(str(path), search_default_paths=False).get('diagnosis.default_profile') == 'QUICK'
        assert config.save_to_file(str(tmp_path / 'healer.ini')) is False


class TestRecordStore:
    """Document storage, queries, alerts and snapshots."""

    def test_records_are_copies(self, store) -> None:
        site = Target('site-1', 'example.com', '/var/www/site', 'server-1')
        store.upsert('sites', site)
        site.domain = 'changed.example.com'

        loaded = store.get('sites', 'site-1')
        loaded.path = '/tmp'

        assert store.get('sites', 'site-1').domain == 'example.com'
        assert store.get('sites', 'site-1').path == '/var/www/site'

    def test_query_filters_sorts_and_pages(self, store) -> None:
        for n in range(5):
            store.upsert('executions', Execution(
                f"site-{n % 2}", TriggerSource.MANUAL, None, DiagnosisType.WSOD,
                ExecutionStatus.FAILED if n % 2 else ExecutionStatus.SUCCESS,
                created_at=1000.0 + n,
            ))

        def matches(document):
            return document['site_id'] == 'site-0'

        page = store.query('executions', matches, sort_key=lambda d: d['created_at'],
                           reverse=True, offset=1, limit=1)

        assert store.count('executions', matches) == 3
        assert [e.created_at for e in page] == [1002.0]
        assert page[0].status == ExecutionStatus.SUCCESS

    def test_delete(self, store) -> None:
        store.upsert('sites', Target('site-1', 'example.com', '/var/www/site', 'server-1'))
        assert store.delete('sites', 'site-1') is True
        assert store.delete('sites', 'site-1') is False
        assert store.get('sites', 'site-1') is None

    def test_alerts_are_filtered_and_notify_listeners(self, store) -> None:
        received = []
        store.alert_listeners.append(received.append)

        store.create_alert('circuit_breaker', 'ERROR', 'opened')
        store.create_alert('metrics', 'WARNING', 'low success rate')

        assert [a['message'] for a in store.get_alerts(level='ERROR')] == ['opened']
        assert [a['component'] for a in store.get_alerts(component='metrics')] == ['metrics']
        assert len(received) == 2

    def test_failing_listener_does_not_block_alert(self, store) -> None:
        def broken(alert):
            raise RuntimeError('listener down')

        store.alert_listeners.append(broken)
        store.create_alert('job_queue', 'INFO', 'started')
        assert len(store.get_alerts()) == 1

    def test_snapshot_round_trip(self, tmp_path) -> None:
        path = tmp_path / 'state' / 'healer_state.json'
        store = RecordStore(str(path))
        store.upsert('sites', Target('site-1', 'example.com', '/var/www/site', 'server-1'))
        store.create_alert('circuit_breaker', 'ERROR', 'opened')

        assert store.save_to_file() is True

        restored = RecordStore(str(path))
        assert restored.load_from_file() is True
        assert restored.get('sites', 'site-1').domain == 'example.com'
        assert restored.get_alerts()[0]['message'] == 'opened'

    def test_missing_snapshot(self, tmp_path) -> None:
        assert RecordStore(str(tmp_path / 'none.json')).load_from_file() is False
        assert RecordStore().save_to_file() is False
