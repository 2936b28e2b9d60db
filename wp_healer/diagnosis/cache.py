"""
Diagnosis Cache
Short-lived cache of diagnosis results keyed by site, path, domain and profile.
"""

import logging
import time
from typing import Dict, Any, Optional

from wp_healer.core.models import CacheEntry, DiagnosisProfile, DiagnosisRecord, cache_key
from wp_healer.core.store import RecordStore

logger = logging.getLogger(__name__)


class DiagnosisCache:
    """
    DiagnosisCache handles:
    - Lookups that never return an expired entry
    - Upserts that reset the hit counter
    - Bulk invalidation and expiry cleanup
    """

    TABLE = 'cache'

    def __init__(self, store: RecordStore):
        self.store = store

    def get(self, site_id: str, path: str, domain: str,
            profile: DiagnosisProfile) -> Optional[DiagnosisRecord]:
        """
        Get a cached diagnosis

        Args:
            site_id (str): Site identifier
            path (str): Diagnosed path
            domain (str): Diagnosed domain
            profile (DiagnosisProfile): Profile used

        Returns:
            Optional[DiagnosisRecord]: Record marked as cached, or None on miss or expiry
        """
        key = cache_key(site_id, path, domain, profile)
        entry = self.store.get(self.TABLE, key)
        if entry is None:
            return None

        now = time.time()
        if entry.is_expired(now):
            self.store.delete(self.TABLE, key)
            logger.debug(f"Cache entry expired for {domain} ({profile.value})")
            return None

        entry.hit_count += 1
        entry.last_accessed_at = now
        self.store.upsert(self.TABLE, entry)

        record = DiagnosisRecord.from_dict(entry.result)
        record.cached = True
        record.cache_expires_at = entry.expires_at
        return record

    def set(self, record: DiagnosisRecord, ttl: int) -> CacheEntry:
        """
        Cache a diagnosis

        Args:
            record (DiagnosisRecord): Diagnosis to cache
            ttl (int): Time-to-live in seconds

        Returns:
            CacheEntry: Stored entry
        """
        entry = CacheEntry(
            site_id=record.site_id,
            path=record.path,
            domain=record.domain,
            profile=record.profile,
            result=record.to_dict(),
            health_score=record.health_score,
            expires_at=time.time() + ttl,
            hit_count=0
        )
        return self.store.upsert(self.TABLE, entry)

    def cleanup_expired(self) -> int:
        """Delete all expired entries, returning how many were removed"""
        now = time.time()
        expired = self.store.query(self.TABLE, lambda d: d['expires_at'] < now)
        for entry in expired:
            self.store.delete(self.TABLE, entry.key)
        logger.info(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def clear(self, site_id: Optional[str] = None, profile: Optional[DiagnosisProfile] = None) -> int:
        """
        Invalidate cache entries

        Args:
            site_id (str, optional): Only entries of this site
            profile (DiagnosisProfile, optional): Only entries of this profile

        Returns:
            int: Number of entries removed
        """
        def matches(document: Dict[str, Any]) -> bool:
            if site_id is not None and document['site_id'] != site_id:
                return False
            if profile is not None and document['profile'] != profile.value:
                return False
            return True

        entries = self.store.query(self.TABLE, matches)
        for entry in entries:
            self.store.delete(self.TABLE, entry.key)
        return len(entries)
