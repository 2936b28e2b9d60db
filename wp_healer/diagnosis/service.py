"""
Diagnosis Service
Front door for diagnosing a site: resolves the profile, consults the cache,
runs the aggregator and records history and the site's health.
"""

import logging
import math
import time
from typing import Dict, Any, List, Optional, Union

from wp_healer.core.models import Target, DiagnosisProfile, DiagnosisRecord, CheckType
from wp_healer.core.store import RecordStore
from wp_healer.diagnosis.aggregator import DiagnosisAggregator, health_status_for
from wp_healer.diagnosis.cache import DiagnosisCache
from wp_healer.diagnosis.profiles import ProfileResolver

logger = logging.getLogger(__name__)


class DiagnosisService:
    """
    DiagnosisService handles:
    - Profile resolution and cache policy
    - Diagnosis history and health score trend
    - Site health updates after each fresh diagnosis
    """

    def __init__(self,
                 aggregator: DiagnosisAggregator,
                 resolver: ProfileResolver,
                 cache: DiagnosisCache,
                 store: RecordStore):
        self.aggregator = aggregator
        self.resolver = resolver
        self.cache = cache
        self.store = store

    async def diagnose(self,
                       target: Target,
                       profile: Union[str, DiagnosisProfile] = DiagnosisProfile.LIGHT,
                       custom_checks: Optional[List[Union[str, CheckType]]] = None,
                       subdomain: Optional[str] = None,
                       path: Optional[str] = None,
                       bypass_cache: bool = False) -> DiagnosisRecord:
        """
        Diagnose a site

        Args:
            target (Target): Site to diagnose
            profile (Union[str, DiagnosisProfile]): Diagnosis profile
            custom_checks (List, optional): Checks for the CUSTOM profile
            subdomain (str, optional): Subdomain to diagnose instead of the primary domain
            path (str, optional): Filesystem path, defaults to the site's root
            bypass_cache (bool): Ignore cached results

        Returns:
            DiagnosisRecord: Fresh or cached diagnosis

        Raises:
            UnknownProfileError: If the profile is not known
        """
        parsed = self.resolver.parse(profile)
        config = self.resolver.resolve(parsed, custom_checks)
        domain = subdomain or target.domain
        path = path or target.path

        logger.info(f"Starting {parsed.value} diagnosis for {domain} ({len(config.checks)} checks)")

        if config.use_cache and not bypass_cache:
            cached = self.cache.get(target.id, path, domain, parsed)
            if cached is not None:
                logger.info(f"Returning cached diagnosis for {domain}")
                return cached

        record = await self.aggregator.diagnose(target, path, domain, parsed, config)
        record.subdomain = subdomain

        self.store.upsert('diagnoses', record)
        self._update_site_health(target.id, record)

        if config.use_cache:
            self.cache.set(record, config.cache_ttl)

        logger.info(
            f"Diagnosis completed for {domain}: {record.diagnosis_type.value} (score: {record.health_score})"
        )
        return record

    def _update_site_health(self, site_id: str, record: DiagnosisRecord):
        site = self.store.get('sites', site_id)
        if site is None:
            logger.warning(f"Site {site_id} not in store, health not recorded")
            return
        site.health_score = record.health_score
        site.health_status = health_status_for(record.diagnosis_type, record.health_score)
        site.last_diagnosed_at = record.created_at
        self.store.upsert('sites', site)

    def get_diagnosis_history(self,
                              site_id: str,
                              profile: Optional[DiagnosisProfile] = None,
                              page: int = 1,
                              limit: int = 20) -> Dict[str, Any]:
        """
        Get diagnosis history of a site, most recent first

        Returns:
            Dict[str, Any]: 'data' and 'pagination' (total, page, limit, total_pages)
        """
        def matches(document: Dict[str, Any]) -> bool:
            if document['site_id'] != site_id:
                return False
            return profile is None or document['profile'] == profile.value

        records = self.store.query(
            'diagnoses', matches,
            sort_key=lambda d: d['created_at'], reverse=True,
            offset=(page - 1) * limit, limit=limit
        )
        total = self.store.count('diagnoses', matches)
        return {
            'data': [r.to_dict() for r in records],
            'pagination': {
                'total': total,
                'page': page,
                'limit': limit,
                'total_pages': math.ceil(total / limit) if limit else 0
            }
        }

    def get_health_score_history(self, site_id: str, days: int = 30,
                                 profile: Optional[DiagnosisProfile] = None) -> List[Dict[str, Any]]:
        """Health score points of the last `days` days, oldest first"""
        since = time.time() - days * 86400

        def matches(document: Dict[str, Any]) -> bool:
            if document['site_id'] != site_id or document['created_at'] < since:
                return False
            return profile is None or document['profile'] == profile.value

        records = self.store.query('diagnoses', matches, sort_key=lambda d: d['created_at'])
        return [
            {
                'timestamp': r.created_at,
                'score': r.health_score,
                'status': health_status_for(r.diagnosis_type, r.health_score).value,
                'profile': r.profile.value,
                'category_scores': r.category_scores
            }
            for r in records
        ]

    def available_profiles(self) -> List[Dict[str, Any]]:
        return self.resolver.available_profiles()

    def clear_cache(self, site_id: Optional[str] = None,
                    profile: Optional[DiagnosisProfile] = None) -> int:
        return self.cache.clear(site_id, profile)

    def cleanup_expired_cache(self) -> int:
        return self.cache.cleanup_expired()
