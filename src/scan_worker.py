"""
Scan Worker
Runs the CPU-heavy regex scan in an isolated executor.

The orchestrator and the worker only exchange plain data:
request  {contentSources, serializedRules, parameters, pageUrl, chunkSize}
response {status: 'success', findings} | {status: 'error', message}
"""

import asyncio
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor

from pattern_compiler import compile_patterns
from rule_catalog import deserialize_rules, serialize_rules
from scan_engine import CHUNK_SIZE, ScanEngine
from scan_models import ContentSource, ScanResult


class ScanDelegationError(Exception):
    """The worker could not be reached or reported a failed scan"""


def build_scan_request(sources, rules, parameters, page_url, chunk_size=CHUNK_SIZE):
    """Plain, picklable request payload for one scan"""
    return {
        'contentSources': [source.to_dict() for source in sources],
        'serializedRules': serialize_rules(rules),
        'parameters': list(parameters) if parameters is not None else None,
        'pageUrl': page_url,
        'chunkSize': chunk_size,
    }


def handle_scan_request(payload):
    """Worker-side entry point. Never raises; errors come back as a status."""
    try:
        sources = [ContentSource.from_dict(item) for item in payload.get('contentSources', [])]
        rules = deserialize_rules(payload.get('serializedRules', []))
        detectors = compile_patterns(payload.get('parameters'), rules)
        engine = ScanEngine(payload.get('pageUrl'), payload.get('chunkSize') or CHUNK_SIZE)
        result = engine.scan(sources, detectors)
        return {'status': 'success', 'findings': result.to_dict()}
    except Exception as e:
        print(f"[Worker] An error occurred during scan: {e}")
        return {'status': 'error', 'message': str(e)}


def handle_ping():
    return {'status': 'ready'}


def parse_scan_response(response) -> ScanResult:
    """
    Turn a worker response into a ScanResult.

    Raises:
        ScanDelegationError: on an error status or malformed response
    """
    if not isinstance(response, dict):
        raise ScanDelegationError(f"Malformed worker response: {response!r}")
    if response.get('status') != 'success':
        raise ScanDelegationError(response.get('message') or 'Worker reported an error')
    return ScanResult.from_dict(response.get('findings') or {})


class ScanWorker:
    """Delegates scans to a process (default) or thread pool"""

    def __init__(self, mode='process', max_workers=1, executor=None):
        if mode not in ('process', 'thread'):
            raise ValueError(f"Unknown worker mode: {mode}")
        self.mode = mode
        self.max_workers = max_workers
        self._executor = executor

    def _get_executor(self):
        if self._executor is None:
            if self.mode == 'process':
                self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
            else:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                    thread_name_prefix='scan-worker')
        return self._executor

    async def _submit(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._get_executor(), func, *args)

    async def ping(self):
        """Readiness check before sending a large payload"""
        try:
            response = await self._submit(handle_ping)
        except Exception as e:
            print(f"[Worker] Ping failed: {e}")
            return False
        return response.get('status') == 'ready'

    async def request_scan(self, payload):
        """Send one scan request and wait for its response"""
        try:
            return await self._submit(handle_scan_request, payload)
        except Exception as e:
            print(f"[Worker] Worker unreachable: {e}")
            return {'status': 'error', 'message': f"Worker unreachable: {e}"}

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
