"""
Source Map Reconstruction
Recovers original source files from a JavaScript source map, using the
embedded sourcesContent where present and fetching the files otherwise.
"""

import re
from pathlib import Path
from urllib.parse import urljoin

import requests

ERROR_LOG_KEY = 'jsrecon.error.log'
DEFAULT_TIMEOUT = 15

_SCHEME_PREFIX_RE = re.compile(r'^[a-z][a-z0-9+.\-]*:/*', re.IGNORECASE)


def resolve_source_map_url(value, source):
    """
    Make a sourceMappingURL absolute.

    Args:
        value: Value found after 'sourceMappingURL='
        source: Content source the comment was found in (script URL or a label)

    Returns:
        str: Absolute URL when the source is a URL, otherwise the value unchanged
    """
    if value.startswith(('http://', 'https://', 'data:')):
        return value
    if source and source.startswith(('http://', 'https://')):
        return urljoin(source, value)
    return value


def reconstruct_source(source_map_url, session=None, timeout=DEFAULT_TIMEOUT):
    """
    Rebuild the original files listed in a source map.

    Returns:
        dict: original path -> content. A fatal error yields a single
        ERROR_LOG_KEY entry holding the message.
    """
    http = session or requests
    try:
        try:
            response = http.get(source_map_url, timeout=timeout)
        except requests.RequestException as e:
            raise ValueError(f"Failed to fetch source map due to a network error: {e}") from e

        if response.status_code == 404:
            raise ValueError(f"Source map not found at {source_map_url} (404 Not Found).")
        if not response.ok:
            raise ValueError(f"Failed to fetch source map {source_map_url} (Status: {response.status_code})")

        try:
            source_map = response.json()
        except ValueError as e:
            raise ValueError(f"Source map from {source_map_url} is not valid JSON: {e}") from e

        if not isinstance(source_map, dict) or not isinstance(source_map.get('sources'), list):
            raise ValueError(f"Source map from {source_map_url} is invalid or does not contain a 'sources' array.")

        embedded = source_map.get('sourcesContent') or []
        reconstructed = {}
        for index, source_file in enumerate(source_map['sources']):
            content = embedded[index] if index < len(embedded) else None
            if content:
                reconstructed[source_file] = content
                continue

            source_url = urljoin(source_map_url, source_file)
            try:
                source_response = http.get(source_url, timeout=timeout)
            except requests.RequestException as e:
                print(f"[!] Warning: Skipping source file due to network error: {e}")
                continue

            if not source_response.ok:
                reconstructed[source_file] = (
                    f"[JS Recon] Skipping missing source file: {source_url} "
                    f"(Status: {source_response.status_code})"
                )
                continue
            reconstructed[source_file] = source_response.text

        return reconstructed

    except ValueError as e:
        return {ERROR_LOG_KEY: str(e)}


def safe_relative_path(source_file):
    """Map a source map path (webpack:///src/a.js, ../lib/b.js) to a safe relative path"""
    cleaned = _SCHEME_PREFIX_RE.sub('', source_file.split('?')[0])
    parts = [part for part in re.split(r'[\\/]+', cleaned) if part not in ('', '.', '..')]
    return Path(*parts) if parts else Path('unnamed.js')


def save_reconstructed(sources, output_dir):
    """Write reconstructed sources under output_dir. Returns the written paths."""
    output_dir = Path(output_dir)
    written = []
    for source_file, content in sources.items():
        target = output_dir / safe_relative_path(source_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding='utf-8')
        written.append(target)
    return written
