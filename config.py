"""
Configuration from the environment and an optional .env file
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional, Set

from records import DEFAULT_SOURCE_PREFIX, Direction


logger = logging.getLogger(__name__)


REQUIRED_VARS = [
    'LDAP_SERVER',
    'LDAP_BIND_DN',
    'LDAP_BIND_PASSWORD',
    'LDAP_GROUP_BASE_DN',
    'CIVICRM_URL',
    'CIVICRM_API_KEY',
    'OPENFGA_API_URL',
    'OPENFGA_STORE_ID',
]


def _bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() == "true"


def parse_sync_groups(value: Optional[str]) -> Optional[Set[int]]:
    """Comma-separated Community group ids; None means sync every group."""
    if not value:
        return None
    groups = set()
    for item in value.split(','):
        item = item.strip()
        if not item:
            continue
        try:
            groups.add(int(item))
        except ValueError:
            raise ValueError(f"SYNC_GROUPS entry '{item}' is not a group id")
    return groups or None


@dataclass
class Settings:
    state_db: str = "sync-state.sqlite3"
    batch_count: int = 25
    direction: Direction = Direction.TO_DIRECTORY
    use_container: bool = False
    sync_groups: Optional[Set[int]] = None
    lock_timeout: int = 600
    source_prefix: str = DEFAULT_SOURCE_PREFIX
    log_level: str = "INFO"


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from env (os.environ by default)."""
    env = os.environ if env is None else env

    batch_count = int(env.get("SYNC_BATCH_COUNT", "25"))
    if batch_count < 0:
        raise ValueError("SYNC_BATCH_COUNT must not be negative")

    sync_groups = parse_sync_groups(env.get("SYNC_GROUPS"))
    if sync_groups:
        logger.info(f"Loaded {len(sync_groups)} groups from config: {', '.join(map(str, sorted(sync_groups)))}")

    return Settings(
        state_db=env.get("SYNC_STATE_DB", "sync-state.sqlite3"),
        batch_count=batch_count,
        direction=Direction(env.get("SYNC_DIRECTION", Direction.TO_DIRECTORY.value)),
        use_container=_bool(env.get("SYNC_CONTAINER_GROUP")),
        sync_groups=sync_groups,
        lock_timeout=int(env.get("SYNC_LOCK_TIMEOUT", "600")),
        source_prefix=env.get("SYNC_SOURCE_PREFIX") or DEFAULT_SOURCE_PREFIX,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def validate_settings(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Names of required variables that are not set."""
    env = os.environ if env is None else env
    return [var for var in REQUIRED_VARS if not env.get(var)]


def describe_settings(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Current configuration lines with secrets left out."""
    env = os.environ if env is None else env
    return [
        f"LDAP Server: {env.get('LDAP_SERVER')}",
        f"LDAP Bind DN: {env.get('LDAP_BIND_DN')}",
        f"LDAP Group Base DN: {env.get('LDAP_GROUP_BASE_DN')}",
        f"LDAP Group Filter: {env.get('LDAP_GROUP_FILTER', '(objectClass=groupOfNames)')}",
        f"LDAP Member Attribute: {env.get('LDAP_MEMBER_ATTRIBUTE', 'member')}",
        f"CiviCRM URL: {env.get('CIVICRM_URL')}",
        f"OpenFGA API URL: {env.get('OPENFGA_API_URL')}",
        f"OpenFGA Store ID: {env.get('OPENFGA_STORE_ID')}",
        f"Sync Direction: {env.get('SYNC_DIRECTION', Direction.TO_DIRECTORY.value)}",
        f"Batch Count: {env.get('SYNC_BATCH_COUNT', '25')}",
    ]
