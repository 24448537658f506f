import asyncio
import os
import sys

import pytest
import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import content_gatherer
from content_gatherer import (MAIN_DOCUMENT, ContentGatheringError, HttpPageProvider, PageContent,
                              build_content_sources, extract_page_content, fetch_external_scripts,
                              gather_content_sources)

PAGE = """
<html><head>
<script src="/static/app.js"></script>
<script src="https://cdn.example.net/lib.js"></script>
<script>var first = 1;</script>
</head><body>
<script>var second = 2;</script>
</body></html>
"""


class FakeResponse:
    def __init__(self, text='', status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, pages):
        self.pages = pages
        self.headers = {}
        self.requested = []

    def get(self, url, timeout=None, headers=None):
        self.requested.append(url)
        page = self.pages.get(url)
        if page is None:
            raise requests.ConnectionError(f"cannot reach {url}")
        return page


def test_extract_page_content_resolves_script_urls():
    page = extract_page_content(PAGE, "https://shop.example.com/products/")
    assert page.inline_scripts == ["var first = 1;", "var second = 2;"]
    assert page.external_scripts == [
        "https://shop.example.com/static/app.js",
        "https://cdn.example.net/lib.js",
    ]
    assert page.html == PAGE


def test_page_content_from_dict():
    page = PageContent.from_dict({'html': '<p>', 'inlineScripts': ['a'], 'externalScripts': ['u']})
    assert page == PageContent('<p>', ['a'], ['u'])


def test_failed_fetch_does_not_abort_others():
    session = FakeSession({
        "https://a.test/ok.js": FakeResponse("ok()"),
        "https://a.test/missing.js": FakeResponse("", 404),
    })
    urls = ["https://a.test/ok.js", "https://a.test/missing.js", "https://a.test/down.js"]
    progress = []

    fetched = asyncio.run(fetch_external_scripts(urls, session=session,
                                                 progress_callback=lambda done, total: progress.append(total)))

    assert fetched == {"https://a.test/ok.js": "ok()"}
    assert sorted(session.requested) == sorted(urls)
    assert progress == [3, 3, 3]


def test_content_sources_order_and_size_flag():
    page = PageContent(html="<html>" + "x" * 50 + "</html>", inline_scripts=["a()", ""])
    sources = build_content_sources(page, {"https://a.test/big.js": "y" * 100}, max_source_bytes=60)

    assert [s.source for s in sources] == [
        "Inline Script #1", "Inline Script #2", "https://a.test/big.js", MAIN_DOCUMENT,
    ]
    assert [s.is_too_large for s in sources] == [False, False, True, True]


def test_gather_content_sources_fetches_externals():
    session = FakeSession({"https://a.test/app.js": FakeResponse("load()")})
    page = PageContent(html="<html></html>", inline_scripts=["x()"],
                       external_scripts=["https://a.test/app.js"])
    sources = asyncio.run(gather_content_sources(page, session=session))
    assert [(s.source, s.code) for s in sources] == [
        ("Inline Script #1", "x()"),
        ("https://a.test/app.js", "load()"),
        (MAIN_DOCUMENT, "<html></html>"),
    ]


def test_provider_prefers_registered_html():
    session = FakeSession({})
    provider = HttpPageProvider(session=session)
    provider.set_html(1, "https://a.test/", "<script>go()</script>")

    page = asyncio.run(provider(1, "https://a.test/"))
    assert page.inline_scripts == ["go()"]
    assert session.requested == []


def test_provider_download_failure_raises():
    provider = HttpPageProvider(session=FakeSession({}))
    with pytest.raises(ContentGatheringError):
        asyncio.run(provider(1, "https://down.test/"))


def test_fetch_script_uses_requests_module_by_default(monkeypatch):
    monkeypatch.setattr(content_gatherer.requests, "get",
                        lambda url, timeout=None, headers=None: FakeResponse("body"))
    assert content_gatherer.fetch_script("https://a.test/x.js") == "body"
