"""
Scanner Settings
Defaults, overridden by the "scanner" section of config.json, overridden by
JSRECON_* environment variables (a .env file is honoured).
"""

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from content_gatherer import DEFAULT_TIMEOUT, MAX_SOURCE_BYTES
from result_cache import CACHE_TTL_SECONDS, MAX_CACHE_SIZE_BYTES, ResultCache
from scan_coordinator import ScanCoordinator
from scan_engine import CHUNK_SIZE
from scan_worker import ScanWorker
from storage import open_store

CONFIG_SECTION = 'scanner'

# setting name -> (environment variable, converter)
ENV_OVERRIDES = {
    'cache_ttl_hours': ('JSRECON_CACHE_TTL_HOURS', float),
    'cache_max_bytes': ('JSRECON_CACHE_MAX_BYTES', int),
    'storage_url': ('JSRECON_STORAGE_URL', str),
    'parameters': ('JSRECON_PARAMETERS', lambda value: [p.strip() for p in value.split(',') if p.strip()]),
    'chunk_size': ('JSRECON_CHUNK_SIZE', int),
    'fetch_timeout': ('JSRECON_FETCH_TIMEOUT', float),
    'max_source_bytes': ('JSRECON_MAX_SOURCE_BYTES', int),
    'worker_mode': ('JSRECON_WORKER', str),
}


@dataclass
class ScannerSettings:
    cache_ttl_hours: float = CACHE_TTL_SECONDS / 3600
    cache_max_bytes: int = MAX_CACHE_SIZE_BYTES
    storage_url: Optional[str] = None
    parameters: Optional[List[str]] = None
    chunk_size: int = CHUNK_SIZE
    fetch_timeout: float = DEFAULT_TIMEOUT
    max_source_bytes: int = MAX_SOURCE_BYTES
    worker_mode: str = 'process'
    verbose: bool = False
    extra: dict = field(default_factory=dict)

    @property
    def cache_ttl_seconds(self):
        return self.cache_ttl_hours * 3600


def _read_config_section(config_path):
    config_path = Path(config_path)
    if not config_path.exists():
        return {}
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        print(f"[!] Error loading config: {e}")
        return {}
    section = config.get(CONFIG_SECTION, {}) if isinstance(config, dict) else {}
    if not isinstance(section, dict):
        print(f"[!] Warning: '{CONFIG_SECTION}' section of {config_path} is not an object, ignoring it.")
        return {}
    return section


def load_settings(config_path='config.json', environ=None) -> ScannerSettings:
    """
    Build the effective settings.

    Args:
        config_path: JSON config file (missing file means defaults)
        environ: Mapping to read overrides from (default: os.environ after load_dotenv)
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    settings = ScannerSettings()
    known = set(ENV_OVERRIDES) | {'verbose'}

    section = _read_config_section(config_path)
    updates = {key: value for key, value in section.items() if key in known}
    extra = {key: value for key, value in section.items() if key not in known}
    if isinstance(updates.get('parameters'), str):
        updates['parameters'] = ENV_OVERRIDES['parameters'][1](updates['parameters'])
    settings = replace(settings, extra=extra, **updates)

    for name, (variable, convert) in ENV_OVERRIDES.items():
        raw = environ.get(variable)
        if raw is None or raw == '':
            continue
        try:
            setattr(settings, name, convert(raw))
        except ValueError:
            print(f"[!] Warning: Ignoring invalid value for {variable}: {raw!r}")

    if settings.worker_mode not in ('process', 'thread'):
        print(f"[!] Warning: Unknown worker mode '{settings.worker_mode}', using 'process'.")
        settings.worker_mode = 'process'

    return settings


def build_cache(settings: ScannerSettings) -> ResultCache:
    """Result cache over the configured store"""
    store = open_store(settings.storage_url)
    return ResultCache(store, ttl_seconds=settings.cache_ttl_seconds,
                       max_bytes=settings.cache_max_bytes)


def build_coordinator(settings: ScannerSettings, content_provider, worker=None,
                      notifier=None, fetch_session=None) -> ScanCoordinator:
    """Wire cache, worker and coordinator from settings"""
    return ScanCoordinator(
        cache=build_cache(settings),
        worker=worker or ScanWorker(mode=settings.worker_mode),
        content_provider=content_provider,
        parameters=settings.parameters,
        notifier=notifier,
        fetch_session=fetch_session,
        fetch_timeout=settings.fetch_timeout,
        max_source_bytes=settings.max_source_bytes,
        chunk_size=settings.chunk_size,
        verbose=settings.verbose,
    )
