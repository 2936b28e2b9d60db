"""
Diagnosis Profiles
Named diagnosis depths mapping to a check set, timeout and cache policy.
"""

import logging
from typing import Dict, Any, List, Optional, Union

from wp_healer.core.exceptions import UnknownProfileError, UnknownCheckError
from wp_healer.core.models import CheckType, DiagnosisProfile

logger = logging.getLogger(__name__)


class ProfileConfig:
    """Resolved settings of one diagnosis profile"""

    def __init__(self,
                 checks: List[CheckType],
                 timeout: int,
                 log_depth: int,
                 parallel: bool,
                 use_cache: bool,
                 cache_ttl: int,
                 description: str):
        """
        Args:
            checks (List[CheckType]): Checks to run
            timeout (int): Per-check timeout in milliseconds
            log_depth (int): Log lines to inspect
            parallel (bool): Run checks concurrently
            use_cache (bool): Cache results of this profile
            cache_ttl (int): Cache time-to-live in seconds
            description (str): Human readable description
        """
        self.checks = list(checks)
        self.timeout = timeout
        self.log_depth = log_depth
        self.parallel = parallel
        self.use_cache = use_cache
        self.cache_ttl = cache_ttl
        self.description = description

    def copy(self, **overrides) -> 'ProfileConfig':
        values = {
            'checks': self.checks,
            'timeout': self.timeout,
            'log_depth': self.log_depth,
            'parallel': self.parallel,
            'use_cache': self.use_cache,
            'cache_ttl': self.cache_ttl,
            'description': self.description
        }
        values.update(overrides)
        return ProfileConfig(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'checks': [c.value for c in self.checks],
            'timeout': self.timeout,
            'log_depth': self.log_depth,
            'parallel': self.parallel,
            'use_cache': self.use_cache,
            'cache_ttl': self.cache_ttl,
            'description': self.description
        }


PROFILE_CONFIGS: Dict[DiagnosisProfile, ProfileConfig] = {
    DiagnosisProfile.FULL: ProfileConfig(
        checks=[
            CheckType.HTTP_STATUS,
            CheckType.MAINTENANCE_MODE,
            CheckType.DATABASE_CONNECTION,
            CheckType.WP_VERSION,
            CheckType.CORE_INTEGRITY,
            CheckType.PHP_ERRORS,
            CheckType.APACHE_NGINX_LOGS,
            CheckType.DISK_SPACE,
            CheckType.FILE_PERMISSIONS,
            CheckType.HTACCESS,
            CheckType.WP_CONFIG,
            CheckType.MEMORY_LIMIT,
            CheckType.SSL_CERTIFICATE,
            CheckType.PLUGIN_STATUS,
            CheckType.THEME_STATUS,
            CheckType.UPDATE_STATUS
        ],
        timeout=120000,
        log_depth=500,
        parallel=True,
        use_cache=False,
        cache_ttl=0,
        description='Comprehensive diagnosis with all checks (manual investigation)'
    ),
    DiagnosisProfile.LIGHT: ProfileConfig(
        checks=[
            CheckType.HTTP_STATUS,
            CheckType.MAINTENANCE_MODE,
            CheckType.DATABASE_CONNECTION,
            CheckType.WP_VERSION,
            CheckType.PHP_ERRORS,
            CheckType.DISK_SPACE
        ],
        timeout=60000,
        log_depth=100,
        parallel=True,
        use_cache=True,
        cache_ttl=300,
        description='Quick health check with critical checks only (scheduled sweeps)'
    ),
    DiagnosisProfile.QUICK: ProfileConfig(
        checks=[
            CheckType.HTTP_STATUS,
            CheckType.MAINTENANCE_MODE
        ],
        timeout=30000,
        log_depth=0,
        parallel=True,
        use_cache=True,
        cache_ttl=60,
        description='Minimal status check (fast polling)'
    ),
    DiagnosisProfile.CUSTOM: ProfileConfig(
        checks=[],
        timeout=90000,
        log_depth=200,
        parallel=True,
        use_cache=False,
        cache_ttl=0,
        description='User-selected checks'
    )
}


class ProfileResolver:
    """Resolves profile names to concrete ProfileConfigs"""

    def __init__(self,
                 profiles: Optional[Dict[DiagnosisProfile, ProfileConfig]] = None,
                 overrides: Optional[Dict[str, Dict[str, Any]]] = None):
        """
        Initialize the resolver

        Args:
            profiles (Dict[DiagnosisProfile, ProfileConfig], optional): Profile table,
                defaults to PROFILE_CONFIGS
            overrides (Dict[str, Dict[str, Any]], optional): Per-profile setting overrides
                keyed by profile name, e.g. {'LIGHT': {'cache_ttl': 120}}
        """
        table = dict(profiles or PROFILE_CONFIGS)
        for name, values in (overrides or {}).items():
            try:
                profile = DiagnosisProfile(name.upper())
            except ValueError:
                logger.warning(f"Ignoring overrides for unknown profile: {name}")
                continue
            allowed = {k: v for k, v in values.items()
                       if k in ('timeout', 'log_depth', 'parallel', 'use_cache', 'cache_ttl', 'description')}
            table[profile] = table[profile].copy(**allowed)
        self._profiles = table

    @staticmethod
    def parse(profile: Union[str, DiagnosisProfile]) -> DiagnosisProfile:
        """Parse a profile name, raising UnknownProfileError if it is not known"""
        if isinstance(profile, DiagnosisProfile):
            return profile
        try:
            return DiagnosisProfile(str(profile).upper())
        except ValueError:
            raise UnknownProfileError(str(profile))

    @staticmethod
    def parse_check(check: Union[str, CheckType]) -> CheckType:
        if isinstance(check, CheckType):
            return check
        try:
            return CheckType(str(check).upper())
        except ValueError:
            raise UnknownCheckError(str(check))

    def resolve(self,
                profile: Union[str, DiagnosisProfile],
                custom_checks: Optional[List[Union[str, CheckType]]] = None) -> ProfileConfig:
        """
        Resolve a profile

        Args:
            profile (Union[str, DiagnosisProfile]): Profile name
            custom_checks (List, optional): Checks used by the CUSTOM profile

        Returns:
            ProfileConfig: Resolved profile settings

        Raises:
            UnknownProfileError: If the profile is not known
            UnknownCheckError: If a custom check name is not a known check type
        """
        parsed = self.parse(profile)
        config = self._profiles.get(parsed)
        if config is None:
            raise UnknownProfileError(str(profile))

        if parsed == DiagnosisProfile.CUSTOM:
            checks = [self.parse_check(c) for c in (custom_checks or [])]
            return config.copy(checks=checks)

        return config.copy()

    def available_profiles(self) -> List[Dict[str, Any]]:
        """
        List available profiles

        Returns:
            List[Dict[str, Any]]: Name, description, check count, timeout and cache settings
        """
        return [
            {
                'profile': profile.value,
                'description': config.description,
                'checks': len(config.checks),
                'timeout': config.timeout,
                'use_cache': config.use_cache,
                'cache_ttl': config.cache_ttl
            }
            for profile, config in self._profiles.items()
        ]
