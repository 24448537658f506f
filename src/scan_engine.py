"""
Scan Engine
Applies every active detector to every content source and groups the
accepted matches into findings.

Sources are processed in small chunks. `iter_scan` yields after each chunk so
callers decide how to cede control (an event loop awaits between chunks, a
worker process simply drains the generator).
"""

import asyncio
import html
import re
from typing import Dict, Iterator, List

from domain_classifier import get_domain_info, is_valid_subdomain
from entropy_scorer import EntropyScorer
from pattern_compiler import CATEGORIES, ENDPOINTS, POTENTIAL_SECRETS, SUBDOMAINS, Detector
from scan_models import CONTEXT_LINE, ContentSource, Occurrence, ScanResult

# Sources scanned between two cooperative yields
CHUNK_SIZE = 5

# \u0041 or u0041 -> %41, then %41 -> A
_UNICODE_ESCAPE_RE = re.compile(r'\\?u00([0-9a-f]{2})', re.IGNORECASE)
_PERCENT_ESCAPE_RE = re.compile(r'%[0-9a-f]{2}', re.IGNORECASE)
_DEGENERATE_ENDPOINT_RE = re.compile(r'^/+$')


def _decode_percent(match):
    try:
        return bytes.fromhex(match.group(0)[1:]).decode('utf-8')
    except UnicodeDecodeError:
        return match.group(0)


def decode_text(text: str) -> str:
    """
    Normalize escaped content before matching: \\u00XX and %XX sequences are
    decoded, then HTML entities are unescaped.
    """
    standardized = _UNICODE_ESCAPE_RE.sub(lambda m: '%' + m.group(1), text)
    decoded = _PERCENT_ESCAPE_RE.sub(_decode_percent, standardized)
    return html.unescape(decoded)


def is_valid_endpoint(value: str) -> bool:
    return not _DEGENERATE_ENDPOINT_RE.match(value)


class ScanEngine:
    """Regex scanning of page content for one page"""

    def __init__(self, page_url=None, chunk_size=CHUNK_SIZE):
        self.page_url = page_url
        self.current_hostname, self.base_domain = get_domain_info(page_url or '')
        self.chunk_size = max(1, int(chunk_size))

    def new_result(self, detectors=None) -> ScanResult:
        categories = list(detectors.keys()) if detectors else list(CATEGORIES)
        return ScanResult.empty(categories)

    def scan(self, sources, detectors, progress_callback=None) -> ScanResult:
        """Scan all sources in one go (used inside the worker context)"""
        result = self.new_result(detectors)
        for _ in self.iter_scan(sources, detectors, result, progress_callback):
            pass
        return result

    async def scan_async(self, sources, detectors, progress_callback=None) -> ScanResult:
        """Scan on the running event loop, yielding to it between chunks"""
        result = self.new_result(detectors)
        for _ in self.iter_scan(sources, detectors, result, progress_callback):
            await asyncio.sleep(0)
        return result

    def iter_scan(self, sources: List[ContentSource], detectors: Dict[str, List[Detector]],
                  result: ScanResult, progress_callback=None) -> Iterator[int]:
        """
        Scan sources chunk by chunk, filling `result` in place.

        Args:
            sources: Content sources to scan
            detectors: category -> detectors, as built by compile_patterns()
            result: ScanResult to fill
            progress_callback: Optional callable(completed, total)

        Yields:
            int: Number of sources processed so far, once per chunk
        """
        total = len(sources)
        for start in range(0, total, self.chunk_size):
            end = min(start + self.chunk_size, total)
            for index in range(start, end):
                self._scan_source(sources[index], detectors, result)
                if progress_callback:
                    progress_callback(index + 1, total)
            yield end

    def _scan_source(self, source, detectors, result):
        if source is None or not isinstance(source.code, str) or not source.code:
            return

        decoded = decode_text(source.code)
        result.content_map[source.source] = decoded

        for category, category_detectors in detectors.items():
            for detector in category_detectors:
                if not detector.is_active:
                    continue
                try:
                    self._apply_detector(detector, category, decoded, source.source, result)
                except Exception as e:
                    print(f"[!] Warning: Detector '{detector.name}' failed on {source.source}: {e}")

    def _apply_detector(self, detector, category, text, source_name, result):
        for match in detector.finditer(text):
            captured = match.group(detector.group)
            if captured is None:
                continue
            value = captured.strip()
            if not value:
                continue
            if not self._is_valid(category, value, detector):
                continue

            if detector.context_mode == CONTEXT_LINE:
                length = len(match.group(0))
            else:
                length = len(value)

            result.add(category, value, Occurrence(
                source=source_name,
                rule_id=detector.rule_id,
                index=match.start(),
                length=length,
                context_mode=detector.context_mode,
            ))

    def _is_valid(self, category, value, detector):
        if category == SUBDOMAINS:
            return is_valid_subdomain(value, self.current_hostname, self.base_domain)
        if category == POTENTIAL_SECRETS:
            return EntropyScorer.passes_gate(value, detector.min_entropy)
        if category == ENDPOINTS:
            return is_valid_endpoint(value)
        return True


def scan_sources(sources, detectors, page_url=None, chunk_size=CHUNK_SIZE,
                 progress_callback=None) -> ScanResult:
    """Convenience wrapper: one synchronous scan"""
    return ScanEngine(page_url, chunk_size).scan(sources, detectors, progress_callback)
