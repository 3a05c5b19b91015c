"""
Opcache Exporter - Snapshot Module

Typed model of the JSON produced by PHP's opcache_get_status().
"""

from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

# PHP renders last_used like "Fri Jan  5 10:42:07 2024" (day space-padded)
LAST_USED_FORMAT = '%a %b %d %H:%M:%S %Y'


def parse_last_used(value: str) -> datetime:
    """Parse opcache's last_used text into an aware UTC datetime

    Raises:
        ValueError: If the text does not match the fixed format
    """
    return datetime.strptime(value.strip(), LAST_USED_FORMAT).replace(tzinfo=timezone.utc)


def format_last_used(value: datetime) -> str:
    """Format a datetime the way opcache reports last_used"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.ctime()


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class MemoryUsage(_Frozen):
    used_memory: int
    free_memory: int
    wasted_memory: int
    current_wasted_percentage: float


class InternedStringsUsage(_Frozen):
    buffer_size: int
    used_memory: int
    free_memory: int
    number_of_strings: int


class OpcacheStatistics(_Frozen):
    num_cached_scripts: int
    num_cached_keys: int
    max_cached_keys: int
    hits: int
    start_time: int
    last_restart_time: int
    oom_restarts: int
    hash_restarts: int
    manual_restarts: int
    misses: int
    blacklist_misses: int
    blacklist_miss_ratio: float
    opcache_hit_rate: float


class ScriptStatus(_Frozen):
    """Per-script cache entry"""
    full_path: str
    hits: int
    memory_consumption: float
    last_used: datetime
    last_used_timestamp: int
    timestamp: int

    @field_validator('last_used', mode='before')
    @classmethod
    def _parse_last_used(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_last_used(value)
        return value

    @field_serializer('last_used')
    def _serialize_last_used(self, value: datetime) -> str:
        return format_last_used(value)


class OpcacheSnapshot(_Frozen):
    """One opcache status report

    The statistics block is read from `opcache_statistics` (what PHP emits)
    or `statistics`.
    """
    opcache_enabled: bool
    cache_full: bool
    restart_pending: bool
    restart_in_progress: bool
    memory_usage: MemoryUsage
    interned_strings_usage: InternedStringsUsage
    opcache_statistics: OpcacheStatistics = Field(
        validation_alias=AliasChoices('opcache_statistics', 'statistics')
    )
    scripts: Dict[str, ScriptStatus] = Field(default_factory=dict)

    @field_validator('scripts', mode='before')
    @classmethod
    def _empty_php_array(cls, value: Any) -> Any:
        # json_encode() turns an empty PHP array into [] rather than {}
        if value == []:
            return {}
        return value
