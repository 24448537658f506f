import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from result_cache import ResultCache
from scan_coordinator import ScanCoordinator
from scan_worker import ScanWorker
from settings import build_cache, build_coordinator, load_settings
from storage import MemoryStore, SQLAlchemyStore


def test_defaults_without_config(tmp_path):
    settings = load_settings(tmp_path / 'missing.json', environ={})
    assert settings.cache_ttl_hours == 2
    assert settings.cache_ttl_seconds == 7200
    assert settings.cache_max_bytes == 30 * 1024 * 1024
    assert settings.storage_url is None
    assert settings.parameters is None
    assert settings.chunk_size == 5
    assert settings.worker_mode == 'process'


def test_config_file_then_environment(tmp_path):
    config = tmp_path / 'config.json'
    config.write_text(json.dumps({
        'scanner': {'cache_ttl_hours': 1, 'parameters': 'next, goto', 'chunk_size': 3, 'theme': 'dark'},
        'other': {'ignored': True},
    }), encoding='utf-8')

    settings = load_settings(config, environ={'JSRECON_CHUNK_SIZE': '8', 'JSRECON_WORKER': 'thread'})
    assert settings.cache_ttl_hours == 1
    assert settings.parameters == ['next', 'goto']
    assert settings.chunk_size == 8
    assert settings.worker_mode == 'thread'
    assert settings.extra == {'theme': 'dark'}


def test_environment_parsing_and_invalid_values(tmp_path):
    settings = load_settings(tmp_path / 'missing.json', environ={
        'JSRECON_PARAMETERS': 'a,,b ',
        'JSRECON_CACHE_MAX_BYTES': 'lots',
        'JSRECON_WORKER': 'gpu',
    })
    assert settings.parameters == ['a', 'b']
    assert settings.cache_max_bytes == 30 * 1024 * 1024
    assert settings.worker_mode == 'process'


def test_broken_config_falls_back_to_defaults(tmp_path):
    config = tmp_path / 'config.json'
    config.write_text('{not json', encoding='utf-8')
    assert load_settings(config, environ={}).chunk_size == 5


def test_build_cache_and_coordinator(tmp_path):
    settings = load_settings(tmp_path / 'missing.json', environ={'JSRECON_WORKER': 'thread'})
    cache = build_cache(settings)
    assert isinstance(cache, ResultCache)
    assert isinstance(cache.store, MemoryStore)
    assert cache.ttl_seconds == 7200

    settings.storage_url = f"sqlite:///{tmp_path / 'cache.db'}"
    persistent = build_cache(settings)
    assert isinstance(persistent.store, SQLAlchemyStore)
    persistent.store.close()

    async def provider(tab_id, url):
        return {'html': ''}

    coordinator = build_coordinator(settings, provider)
    assert isinstance(coordinator, ScanCoordinator)
    assert isinstance(coordinator.worker, ScanWorker)
    assert coordinator.worker.mode == 'thread'
    coordinator.cache.store.close()
