"""
Result Export
Flattens a ScanResult into a downloadable JSON document:
category -> value -> list of occurrences with their resolved context.
"""

import json
from pathlib import Path

from domain_classifier import extract_hostname
from utils import save_json


def export_results(result):
    document = {}
    for category, bucket in result.results_by_category.items():
        document[category] = {}
        for value, finding in bucket.items():
            entries = []
            for occ in finding.occurrences:
                entry = occ.to_dict()
                entry['context'] = result.context(occ)
                entry['fullContext'] = result.context(occ, full=True)
                entries.append(entry)
            document[category][value] = entries
    return document


def export_json(result, indent=2):
    return json.dumps(export_results(result), indent=indent, ensure_ascii=False)


def default_export_name(url):
    """recon_<hostname>.json (falls back to 'page' when the URL has no host)"""
    hostname = extract_hostname(url or '') or 'page'
    return f"recon_{hostname}.json"


def save_export(result, path) -> Path:
    """Write the export document to disk, creating parent directories"""
    saved = save_json(export_results(result), path)
    print(f"[+] Results exported to: {saved}")
    return saved
