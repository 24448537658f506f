"""
Utility functions for the scanner
"""

import json
from pathlib import Path


def save_json(data, file_path):
    """Save data to JSON file"""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    return file_path


def format_bytes(bytes_size):
    """Format bytes to human readable"""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if bytes_size < 1024:
            return f"{bytes_size:.2f} {unit}"
        bytes_size /= 1024
    return f"{bytes_size:.2f} TB"


def is_scannable_url(url):
    """Only http(s) pages can be scanned (not chrome://, file://, about:blank...)"""
    return bool(url) and url.lower().startswith(('http://', 'https://'))
