import os
import sys

import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from sourcemap_parser import (ERROR_LOG_KEY, reconstruct_source, resolve_source_map_url,
                              safe_relative_path, save_reconstructed)

MAP_URL = "https://a.test/static/app.js.map"


class FakeResponse:
    def __init__(self, status_code=200, text='', payload=None):
        self.status_code = status_code
        self.text = text
        self.payload = payload

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self.payload is None:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = responses

    def get(self, url, timeout=None):
        response = self.responses.get(url)
        if response is None:
            raise requests.ConnectionError(f"cannot reach {url}")
        return response


def test_resolve_against_script_url():
    assert resolve_source_map_url("app.js.map", "https://a.test/static/app.js") == MAP_URL
    assert resolve_source_map_url("https://cdn.test/x.map", "Inline Script #1") == "https://cdn.test/x.map"
    assert resolve_source_map_url("x.map", "Inline Script #1") == "x.map"


def test_reconstruct_embedded_fetched_missing_and_unreachable():
    session = FakeSession({
        MAP_URL: FakeResponse(payload={
            'sources': ['webpack:///src/index.js', 'util.js', 'gone.js', 'offline.js'],
            'sourcesContent': ['console.log(1)', None],
        }),
        "https://a.test/static/util.js": FakeResponse(text='export const u = 1;'),
        "https://a.test/static/gone.js": FakeResponse(status_code=404),
    })

    sources = reconstruct_source(MAP_URL, session=session)

    assert sources['webpack:///src/index.js'] == 'console.log(1)'
    assert sources['util.js'] == 'export const u = 1;'
    assert 'Skipping missing source file' in sources['gone.js']
    assert 'offline.js' not in sources


def test_fatal_errors_yield_error_log():
    assert 'not found' in reconstruct_source(MAP_URL, session=FakeSession({MAP_URL: FakeResponse(404)}))[ERROR_LOG_KEY]
    assert ERROR_LOG_KEY in reconstruct_source(MAP_URL, session=FakeSession({}))
    assert ERROR_LOG_KEY in reconstruct_source(MAP_URL, session=FakeSession({MAP_URL: FakeResponse(text='<html>')}))
    invalid = FakeSession({MAP_URL: FakeResponse(payload={'version': 3})})
    assert "'sources'" in reconstruct_source(MAP_URL, session=invalid)[ERROR_LOG_KEY]


def test_saved_paths_stay_inside_output_dir(tmp_path):
    assert str(safe_relative_path('webpack:///src/index.js')).replace('\\', '/') == 'src/index.js'
    assert str(safe_relative_path('../../etc/passwd')).replace('\\', '/') == 'etc/passwd'

    written = save_reconstructed({'webpack:///src/a.js': 'a', '../b.js': 'b'}, tmp_path)
    assert sorted(p.relative_to(tmp_path).as_posix() for p in written) == ['b.js', 'src/a.js']
    assert (tmp_path / 'src' / 'a.js').read_text(encoding='utf-8') == 'a'
