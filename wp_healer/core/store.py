"""
RecordStore Component
Responsible for holding healer records (sites, executions, patterns, cache
entries, diagnosis history, backups), component states and alerts.
"""

import copy
import json
import logging
import os
import time
from typing import Dict, Any, List, Optional, Callable

from wp_healer.core.models import (
    Target, Execution, HealingPattern, CacheEntry, DiagnosisRecord, BackupRef
)

logger = logging.getLogger(__name__)

# Table name -> record class used to rehydrate stored documents
RECORD_TYPES = {
    'sites': Target,
    'executions': Execution,
    'patterns': HealingPattern,
    'cache': CacheEntry,
    'diagnoses': DiagnosisRecord,
    'backups': BackupRef
}


class Alert:
    """Class representing a system alert"""

    def __init__(self,
                 component: str,
                 level: str,
                 message: str,
                 timestamp: Optional[float] = None):
        """
        Initialize an alert

        Args:
            component (str): The component that generated the alert
            level (str): Alert level (INFO, WARNING, ERROR, CRITICAL)
            message (str): Alert message
            timestamp (float, optional): Alert timestamp. Defaults to current time.
        """
        self.component = component
        self.level = level
        self.message = message
        self.timestamp = timestamp if timestamp is not None else time.time()
        self.acknowledged = False
        self.id = f"{self.component}-{self.timestamp}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'component': self.component,
            'level': self.level,
            'message': self.message,
            'timestamp': self.timestamp,
            'acknowledged': self.acknowledged
        }


class ComponentState:
    """Runtime status of a long-lived component"""

    def __init__(self, name: str):
        self.name = name
        self.status = "initializing"
        self.error_message: Optional[str] = None
        self.last_heartbeat = 0.0
        self.metrics: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'status': self.status,
            'error_message': self.error_message,
            'last_heartbeat': self.last_heartbeat,
            'metrics': self.metrics
        }


class RecordStore:
    """
    In-memory record store with JSON snapshots.

    Every mutation is a single-record upsert keyed by the record's natural
    identifier. Records are stored as documents and rehydrated on read, so
    callers never share live objects with the store.
    """

    def __init__(self, state_file: Optional[str] = None):
        """
        Initialize the RecordStore

        Args:
            state_file (str, optional): JSON file used by save/load
        """
        self.state_file = state_file
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in RECORD_TYPES}
        self.components: Dict[str, ComponentState] = {}
        self.alerts: List[Alert] = []
        self.alert_listeners: List[Callable[[Alert], None]] = []

    # ------------------------------------------------------------------
    # Records

    def _key_of(self, table: str, record: Any) -> str:
        return record.key if table == 'cache' else record.id

    def get(self, table: str, key: str) -> Optional[Any]:
        """
        Get a record by key

        Args:
            table (str): Table name
            key (str): Record key

        Returns:
            Optional[Any]: Rehydrated record or None
        """
        document = self.tables[table].get(key)
        if document is None:
            return None
        return RECORD_TYPES[table].from_dict(copy.deepcopy(document))

    def upsert(self, table: str, record: Any) -> Any:
        """Insert or overwrite a record, returning it"""
        self.tables[table][self._key_of(table, record)] = copy.deepcopy(record.to_dict())
        return record

    def delete(self, table: str, key: str) -> bool:
        """Delete a record, returning whether it existed"""
        return self.tables[table].pop(key, None) is not None

    def query(self,
              table: str,
              predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
              sort_key: Optional[Callable[[Dict[str, Any]], Any]] = None,
              reverse: bool = False,
              offset: int = 0,
              limit: Optional[int] = None) -> List[Any]:
        """
        Query a table over its stored documents

        Args:
            table (str): Table name
            predicate (Callable, optional): Filter applied to each document
            sort_key (Callable, optional): Sort key applied to each document
            reverse (bool): Sort descending
            offset (int): Number of matches to skip
            limit (int, optional): Maximum number of records to return

        Returns:
            List[Any]: Rehydrated records
        """
        documents = [d for d in self.tables[table].values() if predicate is None or predicate(d)]
        if sort_key is not None:
            documents.sort(key=sort_key, reverse=reverse)
        end = None if limit is None else offset + limit
        record_type = RECORD_TYPES[table]
        return [record_type.from_dict(copy.deepcopy(d)) for d in documents[offset:end]]

    def count(self, table: str, predicate: Optional[Callable[[Dict[str, Any]], bool]] = None) -> int:
        return sum(1 for d in self.tables[table].values() if predicate is None or predicate(d))

    # ------------------------------------------------------------------
    # Component states

    def update_component_status(self, name: str, status: str, error_message: Optional[str] = None):
        """
        Update a component's status

        Args:
            name (str): Component name
            status (str): New status
            error_message (str, optional): Error message for error states
        """
        state = self.components.setdefault(name, ComponentState(name))
        state.status = status
        state.error_message = error_message
        logger.debug(f"Component {name} status: {status}")

    def update_component_metric(self, name: str, metric_name: str, value: Any):
        state = self.components.setdefault(name, ComponentState(name))
        state.metrics[metric_name] = value

    async def component_heartbeat(self, name: str, status: str = 'healthy',
                                  details: Optional[Dict[str, Any]] = None):
        """Record a component heartbeat"""
        state = self.components.setdefault(name, ComponentState(name))
        state.last_heartbeat = time.time()
        if details:
            state.metrics.update(details)
        if state.status in ("running", "healthy", "degraded"):
            state.status = status

    # ------------------------------------------------------------------
    # Alerts

    def create_alert(self, component: str, level: str, message: str) -> Alert:
        """
        Create a new alert

        Args:
            component (str): Component that generated the alert
            level (str): Alert level
            message (str): Alert message

        Returns:
            Alert: The created alert object
        """
        alert = Alert(component, level, message)
        self.alerts.append(alert)

        if level == "INFO":
            logger.info(f"ALERT [{component}]: {message}")
        elif level == "WARNING":
            logger.warning(f"ALERT [{component}]: {message}")
        elif level == "ERROR":
            logger.error(f"ALERT [{component}]: {message}")
        elif level == "CRITICAL":
            logger.critical(f"ALERT [{component}]: {message}")

        for listener in self.alert_listeners:
            try:
                listener(alert)
            except Exception as e:
                logger.error(f"Error notifying alert listener: {str(e)}")

        if len(self.alerts) > 1000:
            self.alerts.pop(0)

        return alert

    def get_alerts(self, component: Optional[str] = None, level: Optional[str] = None,
                   limit: int = 100) -> List[Dict[str, Any]]:
        """Get alerts, most recent first"""
        filtered = self.alerts
        if component is not None:
            filtered = [a for a in filtered if a.component == component]
        if level is not None:
            filtered = [a for a in filtered if a.level == level]
        filtered = sorted(filtered, key=lambda a: a.timestamp, reverse=True)
        return [alert.to_dict() for alert in filtered[:limit]]

    # ------------------------------------------------------------------
    # Persistence

    def save_to_file(self, file_path: Optional[str] = None) -> bool:
        """
        Save all record tables to a JSON file

        Args:
            file_path (str, optional): Target file, defaults to the configured state file

        Returns:
            bool: True if successful, False otherwise
        """
        file_path = file_path or self.state_file
        if not file_path:
            logger.warning("No state file configured, skipping save")
            return False

        try:
            os.makedirs(os.path.dirname(os.path.abspath(file_path)), exist_ok=True)
            snapshot = {
                'timestamp': time.time(),
                'tables': self.tables,
                'alerts': [a.to_dict() for a in self.alerts]
            }
            with open(file_path, 'w') as f:
                json.dump(snapshot, f, indent=2)
            logger.info(f"Saved healer state to {file_path}")
            return True
        except (OSError, TypeError) as e:
            logger.error(f"Error saving state to {file_path}: {str(e)}")
            return False

    def load_from_file(self, file_path: Optional[str] = None) -> bool:
        """
        Load record tables from a JSON file

        Args:
            file_path (str, optional): Source file, defaults to the configured state file

        Returns:
            bool: True if loaded, False if missing or unreadable
        """
        file_path = file_path or self.state_file
        if not file_path or not os.path.exists(file_path):
            return False

        try:
            with open(file_path, 'r') as f:
                snapshot = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading state from {file_path}: {str(e)}")
            return False

        for name, documents in snapshot.get('tables', {}).items():
            if name in self.tables:
                self.tables[name] = documents
        for data in snapshot.get('alerts', []):
            alert = Alert(data['component'], data['level'], data['message'], data['timestamp'])
            alert.acknowledged = data.get('acknowledged', False)
            self.alerts.append(alert)

        logger.info(f"Loaded healer state from {file_path}")
        return True
