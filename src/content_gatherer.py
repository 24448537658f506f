"""
Page Content Gatherer
Turns a page (HTML plus its scripts) into the ordered content sources the
scan engine consumes.

Order: inline scripts, fetched external scripts, then the main HTML document.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from scan_models import ContentSource

DEFAULT_TIMEOUT = 15
MAX_SOURCE_BYTES = 5 * 1024 * 1024
MAIN_DOCUMENT = 'Main HTML Document'

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


class ContentGatheringError(Exception):
    """Page content could not be obtained at all"""


@dataclass
class PageContent:
    """What the page exposes: its HTML, inline script bodies and external script URLs"""
    html: str = ''
    inline_scripts: List[str] = field(default_factory=list)
    external_scripts: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data):
        return cls(
            html=data.get('html') or '',
            inline_scripts=list(data.get('inlineScripts') or []),
            external_scripts=list(data.get('externalScripts') or []),
        )


def extract_page_content(html, page_url=None) -> PageContent:
    """
    Split an HTML document into inline scripts and external script URLs.

    Args:
        html: Page HTML
        page_url: URL the HTML was loaded from (for resolving relative src)

    Returns:
        PageContent
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    inline_scripts = []
    external_scripts = []

    for script in soup.find_all('script'):
        src = script.get('src')
        if src:
            url = urljoin(page_url, src) if page_url else src
            if url not in external_scripts:
                external_scripts.append(url)
        else:
            inline_scripts.append(script.string or script.get_text() or '')

    return PageContent(html=html or '', inline_scripts=inline_scripts,
                       external_scripts=external_scripts)


def fetch_script(url, session=None, timeout=DEFAULT_TIMEOUT) -> Optional[str]:
    """Fetch one script body. Any network failure means the source is unavailable (None)."""
    http = session or requests
    try:
        response = http.get(url, timeout=timeout, headers={'User-Agent': USER_AGENT})
        response.raise_for_status()
        return response.text
    except requests.RequestException as e:
        print(f"[i] Could not fetch script {url}: {e}")
        return None


async def fetch_external_scripts(urls, session=None, timeout=DEFAULT_TIMEOUT,
                                 progress_callback=None) -> Dict[str, str]:
    """
    Fetch every external script concurrently. One failed fetch never aborts the others.

    Returns:
        dict: url -> body, for the fetches that succeeded (request order kept)
    """
    total = len(urls)
    completed = 0

    async def _fetch(url):
        nonlocal completed
        body = await asyncio.to_thread(fetch_script, url, session, timeout)
        completed += 1
        if progress_callback:
            progress_callback(completed, total)
        return body

    bodies = await asyncio.gather(*(_fetch(url) for url in urls), return_exceptions=True)

    fetched = {}
    for url, body in zip(urls, bodies):
        if isinstance(body, Exception):
            print(f"[i] Could not fetch script {url}: {body}")
            continue
        if body is None:
            continue
        fetched[url] = body
    return fetched


def build_content_sources(page: PageContent, fetched=None,
                          max_source_bytes=MAX_SOURCE_BYTES) -> List[ContentSource]:
    """Assemble content sources in scan order, flagging oversized ones"""
    sources = []

    def _add(name, code):
        is_too_large = len(code.encode('utf-8', errors='ignore')) > max_source_bytes
        sources.append(ContentSource(source=name, code=code, is_too_large=is_too_large))

    for number, code in enumerate(page.inline_scripts, start=1):
        _add(f"Inline Script #{number}", code or '')

    for url, code in (fetched or {}).items():
        _add(url, code or '')

    _add(MAIN_DOCUMENT, page.html or '')
    return sources


async def gather_content_sources(page: PageContent, session=None, timeout=DEFAULT_TIMEOUT,
                                 max_source_bytes=MAX_SOURCE_BYTES,
                                 progress_callback=None) -> List[ContentSource]:
    """Fetch the page's external scripts and build its content sources"""
    fetched = await fetch_external_scripts(page.external_scripts, session=session,
                                           timeout=timeout,
                                           progress_callback=progress_callback)
    return build_content_sources(page, fetched, max_source_bytes)


class HttpPageProvider:
    """
    Supplies PageContent for a tab by downloading the page.

    HTML already known for a tab (e.g. posted by a client or read from a file)
    can be registered with set_html() and is used instead of a download.
    """

    def __init__(self, session=None, timeout=DEFAULT_TIMEOUT):
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': USER_AGENT})
        self.timeout = timeout
        self._overrides = {}

    def set_html(self, tab_id, url, html):
        self._overrides[(tab_id, url)] = html

    def forget(self, tab_id):
        for key in [key for key in self._overrides if key[0] == tab_id]:
            del self._overrides[key]

    def _download(self, url):
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.text
        except requests.RequestException as e:
            raise ContentGatheringError(f"Failed to load {url}: {e}") from e

    async def __call__(self, tab_id, url) -> PageContent:
        html = self._overrides.get((tab_id, url))
        if html is None:
            html = await asyncio.to_thread(self._download, url)
        return extract_page_content(html, url)
