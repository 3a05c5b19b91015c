"""
Opcache Exporter - Metrics Module

Renders an OpcacheSnapshot as Prometheus text exposition format.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from prometheus_client.utils import floatToGoString

from .snapshot import OpcacheSnapshot

GAUGE = 'gauge'
COUNTER = 'counter'

UP_METRIC = 'opcache_up'
UP_HELP = 'Whether the opcache status could be scraped'

# Text exposition format 0.0.4
CONTENT_TYPE = 'text/plain; version=0.0.4; charset=utf-8'


@dataclass(frozen=True)
class MetricSample:
    """One metric with exactly one unlabelled sample"""
    name: str
    type: str
    help: str
    value: Union[bool, int, float]

    def render(self) -> str:
        return (
            f"# HELP {self.name} {self.help}\n"
            f"# TYPE {self.name} {self.type}\n"
            f"{self.name} {format_value(self.value)}\n"
        )


def format_value(value: Union[bool, int, float]) -> str:
    """Format a sample value: booleans as 0/1, ints as-is, floats Go-style"""
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, int):
        return str(value)
    return floatToGoString(value)


# (metric name, type, help, attribute path in OpcacheSnapshot)
METRIC_DEFINITIONS = [
    ('opcache_opcache_enabled', GAUGE, 'Opcache Enabled', 'opcache_enabled'),
    ('opcache_cache_full', GAUGE, 'Opcache Cache Full', 'cache_full'),
    ('opcache_restart_pending', GAUGE, 'Opcache Restart Pending', 'restart_pending'),
    ('opcache_restart_in_progress', GAUGE, 'Opcache Restart In Progress', 'restart_in_progress'),
    ('opcache_memory_usage_used_memory', GAUGE, 'Opcache Used Memory', 'memory_usage.used_memory'),
    ('opcache_memory_usage_free_memory', GAUGE, 'Opcache Free Memory', 'memory_usage.free_memory'),
    ('opcache_memory_usage_wasted_memory', GAUGE, 'Opcache Wasted Memory', 'memory_usage.wasted_memory'),
    ('opcache_memory_usage_current_wasted_percentage', GAUGE, 'Opcache Wasted Memory Percentage',
     'memory_usage.current_wasted_percentage'),
    ('opcache_interned_strings_usage_buffer_size', GAUGE, 'Opcache Interned Strings Buffer Size',
     'interned_strings_usage.buffer_size'),
    ('opcache_interned_strings_usage_used_memory', GAUGE, 'Opcache Interned Strings Used Memory',
     'interned_strings_usage.used_memory'),
    ('opcache_interned_strings_usage_free_memory', GAUGE, 'Opcache Interned Strings Free Memory',
     'interned_strings_usage.free_memory'),
    ('opcache_interned_strings_usage_number_of_strings', GAUGE, 'Opcache Interned Strings Number of Strings',
     'interned_strings_usage.number_of_strings'),
    ('opcache_opcache_statistics_num_cached_scripts', GAUGE, 'Opcache Cached Scripts',
     'opcache_statistics.num_cached_scripts'),
    ('opcache_opcache_statistics_num_cached_keys', GAUGE, 'Opcache Cached Keys',
     'opcache_statistics.num_cached_keys'),
    ('opcache_opcache_statistics_max_cached_keys', GAUGE, 'Opcache Max Cached Keys',
     'opcache_statistics.max_cached_keys'),
    ('opcache_opcache_statistics_hits', COUNTER, 'Opcache Hits', 'opcache_statistics.hits'),
    ('opcache_opcache_statistics_start_time', GAUGE, 'Opcache Start Time', 'opcache_statistics.start_time'),
    ('opcache_opcache_statistics_last_restart_time', GAUGE, 'Opcache Last Restart Time',
     'opcache_statistics.last_restart_time'),
    ('opcache_opcache_statistics_oom_restarts', COUNTER, 'Opcache OOM Restarts', 'opcache_statistics.oom_restarts'),
    ('opcache_opcache_statistics_hash_restarts', COUNTER, 'Opcache Hash Restarts',
     'opcache_statistics.hash_restarts'),
    ('opcache_opcache_statistics_manual_restarts', COUNTER, 'Opcache Manual Restarts',
     'opcache_statistics.manual_restarts'),
    ('opcache_opcache_statistics_misses', COUNTER, 'Opcache Misses', 'opcache_statistics.misses'),
    ('opcache_opcache_statistics_blacklist_misses', COUNTER, 'Opcache Blacklist Misses',
     'opcache_statistics.blacklist_misses'),
    ('opcache_opcache_statistics_blacklist_miss_ratio', GAUGE, 'Opcache Blacklist Miss Ratio',
     'opcache_statistics.blacklist_miss_ratio'),
    ('opcache_opcache_statistics_opcache_hit_rate', GAUGE, 'Opcache Hit Rate',
     'opcache_statistics.opcache_hit_rate'),
]


def _lookup(snapshot: OpcacheSnapshot, path: str):
    value = snapshot
    for attribute in path.split('.'):
        value = getattr(value, attribute)
    return value


def collect_samples(snapshot: Optional[OpcacheSnapshot]) -> List[MetricSample]:
    """Build the samples for one render, liveness first

    Args:
        snapshot: Parsed status, or None when the scrape failed

    Returns:
        List of MetricSample in fixed order; only liveness (0) on failure
    """
    samples = [MetricSample(UP_METRIC, GAUGE, UP_HELP, snapshot is not None)]
    if snapshot is None:
        return samples

    for name, metric_type, help_text, path in METRIC_DEFINITIONS:
        samples.append(MetricSample(name, metric_type, help_text, _lookup(snapshot, path)))
    return samples


def render_metrics(snapshot: Optional[OpcacheSnapshot]) -> str:
    """Render a snapshot (or a failed scrape) as exposition text"""
    return ''.join(sample.render() for sample in collect_samples(snapshot))
