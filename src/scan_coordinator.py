"""
Scan Coordinator
Per-tab state machine that decides when a page is scanned, keeps at most one
scan in flight per tab, and discards results of scans that were cancelled,
superseded or whose tab went away.

States per page: idle -> scanning -> complete | error. A completed or failed page is
scanned again only when forced or when the page loads anew; a completed result
also lapses once it outlives the cache TTL.
"""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from content_gatherer import DEFAULT_TIMEOUT, MAX_SOURCE_BYTES, PageContent, gather_content_sources
from exporter import export_results
from result_cache import page_identity
from rule_catalog import get_rule_catalog
from scan_engine import CHUNK_SIZE
from scan_models import ScanResult
from scan_worker import ScanDelegationError, build_scan_request, parse_scan_response
from utils import is_scannable_url


class ScanStatus(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"


# Statuses reported to the presentation layer besides ScanStatus values
STATUS_NEEDS_RELOAD = "needs-reload"
STATUS_NOT_SCANNABLE = "not-scannable"

WARNING_CACHE_WRITE_FAILED = "cache-write-failed"


def findings_count(result: Optional[ScanResult]) -> int:
    """Badge number: distinct findings across all categories"""
    return result.findings_count() if result is not None else 0


@dataclass
class PageRecord:
    identity: str
    status: ScanStatus = ScanStatus.IDLE
    count: int = 0
    result: Optional[ScanResult] = None
    message: Optional[str] = None
    warning: Optional[str] = None
    cached_at: Optional[float] = None
    updated_at: float = field(default_factory=time.time)


@dataclass
class ScanTicket:
    """Handle of one in-flight scan"""
    tab_id: object
    url: str
    generation: int
    force: bool = False
    cancelled: bool = False

    def cancel(self):
        self.cancelled = True


class Notifier:
    """Receives status/badge updates for a tab"""

    def publish(self, tab_id, status, count):
        raise NotImplementedError


class NullNotifier(Notifier):
    def publish(self, tab_id, status, count):
        pass


class ConsoleNotifier(Notifier):
    def publish(self, tab_id, status, count):
        if status == ScanStatus.COMPLETE.value:
            print(f"[Badge] Tab {tab_id}: {count} finding(s)")
        elif status == ScanStatus.SCANNING.value:
            print(f"[Badge] Tab {tab_id}: scanning...")
        else:
            print(f"[Badge] Tab {tab_id}: {status}")


class ScanCoordinator:
    """
    Orchestrates scans for browser-like tabs.

    Args:
        cache: ResultCache
        worker: object with async ping() and async request_scan(payload)
        content_provider: async callable(tab_id, url) -> PageContent (or its dict form)
        rules: Detection rules (default: built-in catalog)
        parameters: Interesting parameter names (default: built-in list)
        notifier: Notifier for badge/status updates
    """

    def __init__(self, cache, worker, content_provider, rules=None, parameters=None,
                 notifier=None, fetch_session=None, fetch_timeout=DEFAULT_TIMEOUT,
                 max_source_bytes=MAX_SOURCE_BYTES, chunk_size=CHUNK_SIZE, progress_callback=None,
                 verbose=False):
        self.cache = cache
        self.worker = worker
        self.content_provider = content_provider
        self.rules = list(rules) if rules is not None else list(get_rule_catalog())
        self.parameters = parameters
        self.notifier = notifier or NullNotifier()
        self.fetch_session = fetch_session
        self.fetch_timeout = fetch_timeout
        self.max_source_bytes = max_source_bytes
        self.chunk_size = chunk_size
        self.progress_callback = progress_callback
        self.verbose = verbose

        self._records: Dict[str, PageRecord] = {}
        self._in_flight: Dict[object, ScanTicket] = {}
        self._open_tabs = set()
        self._tab_urls: Dict[object, str] = {}
        self._generation = itertools.count(1)

    def _debug(self, message):
        if self.verbose:
            print(f"[Coordinator] {message}")

    def _publish(self, tab_id, status, count=0):
        if tab_id not in self._open_tabs:
            return
        try:
            self.notifier.publish(tab_id, status, count)
        except Exception as e:
            print(f"[!] Warning: Status update for tab {tab_id} failed: {e}")

    def _set_record(self, identity, status, **kwargs):
        record = PageRecord(identity=identity, status=status, **kwargs)
        self._records[identity] = record
        return record

    def _current_record(self, identity):
        record = self._records.get(identity)
        if (record is not None and record.status == ScanStatus.COMPLETE
                and record.cached_at is not None and self.cache.is_expired(record.cached_at)):
            self._debug(f"Result for {identity} expired")
            del self._records[identity]
            self.cache.delete(identity)
            return None
        return record

    def _evict(self, tab_id, url):
        identity = page_identity(tab_id, url)
        self._records.pop(identity, None)
        self.cache.delete(identity)

    # Lifecycle events

    async def on_loading_start(self, tab_id, url):
        """A top-level page started loading in a tab"""
        self._open_tabs.add(tab_id)
        previous_url = self._tab_urls.get(tab_id)
        if previous_url is not None and previous_url != url:
            ticket = self._in_flight.pop(tab_id, None)
            if ticket:
                ticket.cancel()
                self._debug(f"Tab {tab_id} navigated away, cancelled scan #{ticket.generation}")
            self._evict(tab_id, previous_url)
        self._tab_urls[tab_id] = url

        if not is_scannable_url(url):
            self._debug(f"Ignoring non-scannable URL {url}")
            return

        identity = page_identity(tab_id, url)
        entry = self.cache.get_entry(identity)
        if entry is not None:
            cached, cached_at = entry
            count = findings_count(cached)
            self._set_record(identity, ScanStatus.COMPLETE, count=count, result=cached,
                             cached_at=cached_at)
            self._publish(tab_id, ScanStatus.COMPLETE.value, count)
            return

        self._set_record(identity, ScanStatus.SCANNING)
        self._publish(tab_id, ScanStatus.SCANNING.value)

    async def on_navigation_complete(self, tab_id, url, frame_id=0, force=False) -> Optional[ScanResult]:
        """
        A frame finished loading. Top-level completions scan the page.

        A page whose last scan failed is left in error until it loads again
        (on_loading_start) or a rescan is forced.

        Returns:
            ScanResult: result of this scan (or the completed one), None when
            the event was ignored, suppressed or the scan failed/was discarded
        """
        if frame_id != 0:
            self._debug(f"Ignoring subframe {frame_id} completion in tab {tab_id}")
            return None
        if not is_scannable_url(url):
            self._debug(f"Ignoring non-scannable URL {url}")
            return None

        self._open_tabs.add(tab_id)
        self._tab_urls[tab_id] = url
        identity = page_identity(tab_id, url)

        existing = self._in_flight.get(tab_id)
        if existing is not None and not existing.cancelled and existing.url == url and not force:
            self._debug(f"Scan already in progress for tab {tab_id}")
            return None

        record = self._current_record(identity)
        if record is not None and record.status == ScanStatus.COMPLETE and not force:
            return record.result
        if record is not None and record.status == ScanStatus.ERROR and not force:
            self._debug(f"Last scan of {url} in tab {tab_id} failed, waiting for reload or rescan")
            return None

        if existing is not None:
            existing.cancel()

        # Registered before the first await so a concurrent trigger sees it
        ticket = ScanTicket(tab_id=tab_id, url=url, generation=next(self._generation), force=force)
        self._in_flight[tab_id] = ticket
        self._set_record(identity, ScanStatus.SCANNING)
        self._publish(tab_id, ScanStatus.SCANNING.value)

        try:
            return await self._run_scan(ticket, identity)
        except Exception as e:
            self._fail(ticket, identity, e)
            return None
        finally:
            if self._in_flight.get(tab_id) is ticket:
                del self._in_flight[tab_id]

    def _is_stale(self, ticket):
        return (
            ticket.cancelled
            or ticket.tab_id not in self._open_tabs
            or self._in_flight.get(ticket.tab_id) is not ticket
            or self._tab_urls.get(ticket.tab_id) != ticket.url
        )

    async def _run_scan(self, ticket, identity):
        print(f"[Scan] Scanning {ticket.url} (tab {ticket.tab_id}, scan #{ticket.generation})")

        page = await self.content_provider(ticket.tab_id, ticket.url)
        if isinstance(page, dict):
            page = PageContent.from_dict(page)
        if self._is_stale(ticket):
            self._debug(f"Discarding scan #{ticket.generation} for tab {ticket.tab_id}")
            return None

        sources = await gather_content_sources(page, session=self.fetch_session,
                                               timeout=self.fetch_timeout,
                                               max_source_bytes=self.max_source_bytes,
                                               progress_callback=self.progress_callback)
        payload = build_scan_request(sources, self.rules, self.parameters, ticket.url,
                                     self.chunk_size)

        if not await self.worker.ping():
            raise ScanDelegationError("Scan worker is not ready")
        response = await self.worker.request_scan(payload)

        if self._is_stale(ticket):
            self._debug(f"Discarding scan #{ticket.generation} for tab {ticket.tab_id}")
            return None

        result = parse_scan_response(response)
        count = findings_count(result)

        warning = None
        if not self.cache.put(identity, result):
            warning = WARNING_CACHE_WRITE_FAILED

        self._set_record(identity, ScanStatus.COMPLETE, count=count, result=result, warning=warning,
                         cached_at=self.cache.clock())
        self._publish(ticket.tab_id, ScanStatus.COMPLETE.value, count)
        print(f"[+] Scan complete for {ticket.url}: {count} finding(s) in {len(sources)} source(s)")
        return result

    def _fail(self, ticket, identity, error):
        if self._is_stale(ticket):
            self._debug(f"Scan #{ticket.generation} for tab {ticket.tab_id} failed after cancellation: {error}")
            return
        print(f"[!] Scan failed for {ticket.url}: {error}")
        self._set_record(identity, ScanStatus.ERROR, message=str(error))
        self._publish(ticket.tab_id, ScanStatus.ERROR.value, 0)

    async def force_rescan(self, tab_id, url=None) -> Optional[ScanResult]:
        """Drop cached/in-memory state for the page and scan it again"""
        url = url or self._tab_urls.get(tab_id)
        if url is None:
            self._debug(f"Rescan requested for unknown tab {tab_id}")
            return None
        self._evict(tab_id, url)
        return await self.on_navigation_complete(tab_id, url, force=True)

    async def on_tab_closed(self, tab_id):
        """Cancel the tab's scan and purge everything kept for it"""
        ticket = self._in_flight.pop(tab_id, None)
        if ticket:
            ticket.cancel()
            self._debug(f"Tab {tab_id} closed, cancelled scan #{ticket.generation}")
        self._open_tabs.discard(tab_id)
        self._tab_urls.pop(tab_id, None)

        prefix = page_identity(tab_id, '')
        for identity in [key for key in self._records if key.startswith(prefix)]:
            del self._records[identity]
        self.cache.delete_for_tab(tab_id)

    async def on_tab_activated(self, tab_id):
        """Republish the status of the tab's current page (no scan)"""
        url = self._tab_urls.get(tab_id)
        if tab_id not in self._open_tabs or url is None:
            self._debug(f"Activation of unknown tab {tab_id}")
            return None
        return self._refresh(tab_id, url)

    async def on_history_updated(self, tab_id, url, frame_id=0):
        """SPA navigation: refresh the displayed status from cache only"""
        if frame_id != 0:
            return None
        if tab_id not in self._open_tabs:
            self._debug(f"History update for unknown tab {tab_id}")
            return None
        return self._refresh(tab_id, url)

    def _refresh(self, tab_id, url):
        status = self.get_page_status(tab_id, url)
        self._publish(tab_id, status['status'], status['count'])
        return status

    # Presentation-facing queries

    def get_page_status(self, tab_id, url):
        """
        Returns:
            dict: status (scanning | complete | needs-reload | not-scannable | error),
            count, result, message and warning
        """
        status = {'status': STATUS_NEEDS_RELOAD, 'count': 0, 'result': None,
                  'message': None, 'warning': None}
        if not is_scannable_url(url):
            status['status'] = STATUS_NOT_SCANNABLE
            return status

        identity = page_identity(tab_id, url)
        record = self._current_record(identity)
        if record is None or record.status == ScanStatus.IDLE:
            entry = self.cache.get_entry(identity)
            if entry is None:
                return status
            cached, cached_at = entry
            record = self._set_record(identity, ScanStatus.COMPLETE, count=findings_count(cached),
                                      result=cached, cached_at=cached_at)

        status.update({
            'status': record.status.value,
            'count': record.count,
            'result': record.result if record.status == ScanStatus.COMPLETE else None,
            'message': record.message,
            'warning': record.warning,
        })
        return status

    def get_result(self, tab_id, url) -> Optional[ScanResult]:
        return self.get_page_status(tab_id, url)['result']

    def export(self, tab_id, url):
        """Flat export document of the page's completed result, or None"""
        result = self.get_result(tab_id, url)
        return export_results(result) if result is not None else None

    def is_scanning(self, tab_id):
        ticket = self._in_flight.get(tab_id)
        return ticket is not None and not ticket.cancelled

    async def scan_page(self, tab_id, url, force=False) -> Optional[ScanResult]:
        """Load-and-complete sequence for one page, as a browser would report it"""
        await self.on_loading_start(tab_id, url)
        if force:
            return await self.force_rescan(tab_id, url)
        return await self.on_navigation_complete(tab_id, url)

    def current_url(self, tab_id):
        """URL last seen for an open tab, or None"""
        return self._tab_urls.get(tab_id) if tab_id in self._open_tabs else None
