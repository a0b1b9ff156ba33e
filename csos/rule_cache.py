"""
Rule Cache and YAML Loader

Single place that reads routing rules, collision rules and approval
thresholds. Rule documents are fetched from remote storage, fall back to the
local rules directory when storage is unavailable, and are kept in memory
for a fixed time-to-live.

The cache does not interpret rule documents; consumers build typed views
with csos.rules.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml

from csos.common.config import Settings, get_settings
from csos.storage import RemoteStorage, get_remote_storage, read_text_file
from csos.utils.constants import (
    APPROVAL_THRESHOLDS,
    COLLISION_RULES,
    DEFAULT_LOCAL_RULES_DIR,
    DEFAULT_RULE_CACHE_TTL_SECONDS,
    DEFAULT_RULES_BUCKET,
    ROUTING_RULES,
    RULE_FILES,
)
from csos.utils.error_handling import RuleLoadError

logger = logging.getLogger(__name__)

RuleDocument = Any


@dataclass(frozen=True)
class CacheEntry:
    """A loaded rule document and the clock time it was stored at."""
    key: str
    data: RuleDocument
    timestamp: float  # seconds, from the cache's clock


class RuleCache:
    """
    Read-through TTL cache of parsed rule documents.

    Args:
        storage: Remote storage used as the primary source
        read_local: Callable reading a local file path as text (fallback source)
        local_dir: Directory holding the fallback copies of the rule files
        bucket: Remote bucket holding the rule files
        ttl_seconds: Entries older than this are reloaded on the next get()
        clock: Callable returning the current time in seconds
        rule_files: Mapping of cache key to rule file name

    Example:
        cache = RuleCache(storage=BackendStorage(url, key))
        routing = cache.get("routing_rules")
    """

    def __init__(
        self,
        storage: RemoteStorage,
        read_local: Callable[[str], str] = read_text_file,
        local_dir: str = DEFAULT_LOCAL_RULES_DIR,
        bucket: str = DEFAULT_RULES_BUCKET,
        ttl_seconds: float = DEFAULT_RULE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        rule_files: Optional[Mapping[str, str]] = None,
    ):
        self.storage = storage
        self.read_local = read_local
        self.local_dir = Path(local_dir)
        self.bucket = bucket
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.rule_files = dict(rule_files or RULE_FILES)
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp < self.ttl_seconds

    def get(self, key: str) -> RuleDocument:
        """
        Get the rule document for a logical rule-set name.

        Returns the cached document while it is fresh; otherwise reloads it
        synchronously, stores it with the current time and returns it.

        Raises:
            KeyError: If key is not a known rule set
            RuleLoadError: If both remote storage and the local file fail
            yaml.YAMLError: If the fetched text is not valid YAML
        """
        if key not in self.rule_files:
            raise KeyError(f"Unknown rule set '{key}'. Known: {', '.join(sorted(self.rule_files))}")

        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry, self.clock()):
            logger.debug(f"Rule cache hit for {key}")
            return entry.data

        logger.info(f"Rule cache miss for {key}, loading {self.rule_files[key]}")
        data = self.load(self.bucket, self.rule_files[key])

        with self._lock:
            self._entries[key] = CacheEntry(key=key, data=data, timestamp=self.clock())
        return data

    def load(self, bucket: str, path: str) -> RuleDocument:
        """
        Load and parse a YAML rule file.

        Tries remote storage first. On any storage failure logs a warning and
        reads the same file from the local rules directory.

        Raises:
            RuleLoadError: If both sources fail (carries both causes)
            yaml.YAMLError: If the text is not valid YAML
        """
        try:
            raw = self.storage.download(bucket, path)
            text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        except Exception as remote_error:
            local_path = self.local_dir / path
            logger.warning(
                f"Failed to load {bucket}/{path} from storage, trying local file {local_path}: {remote_error}"
            )
            try:
                text = self.read_local(str(local_path))
            except Exception as local_error:
                logger.error(f"Local fallback for {path} failed: {local_error}")
                raise RuleLoadError(path, remote_error, local_error) from local_error

        return yaml.safe_load(text)

    def clear(self) -> None:
        """Clear the rules cache (useful for testing or forced refresh)."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} rule cache entries")

    def stats(self) -> List[Dict[str, Any]]:
        """Get cache statistics: one {key, age} per entry, age in milliseconds."""
        now = self.clock()
        with self._lock:
            entries = list(self._entries.values())
        return [
            {"key": entry.key, "age": max(0, int((now - entry.timestamp) * 1000))}
            for entry in entries
        ]


def load_routing_rules(cache: RuleCache) -> RuleDocument:
    """Load routing rules from YAML."""
    return cache.get(ROUTING_RULES)


def load_collision_rules(cache: RuleCache) -> RuleDocument:
    """Load collision rules from YAML."""
    return cache.get(COLLISION_RULES)


def load_approval_thresholds(cache: RuleCache) -> RuleDocument:
    """Load approval thresholds from YAML."""
    return cache.get(APPROVAL_THRESHOLDS)


def build_rule_cache(settings: Settings) -> RuleCache:
    """Create a rule cache wired to the configured storage."""
    return RuleCache(
        storage=get_remote_storage(settings),
        local_dir=settings.local_rules_dir,
        bucket=settings.rules_bucket,
        ttl_seconds=settings.rule_cache_ttl_seconds,
    )


# Global rule cache instance
_rule_cache: Optional[RuleCache] = None
_rule_cache_lock = threading.Lock()

def get_rule_cache() -> RuleCache:
    """Get the global rule cache, validating configuration before first use."""
    global _rule_cache
    with _rule_cache_lock:
        if _rule_cache is None:
            _rule_cache = build_rule_cache(get_settings())
        return _rule_cache
