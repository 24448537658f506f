"""
Scan Data Model
Content sources, findings, occurrences and the scan result handed to the
cache and the presentation layer.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

# Context extraction modes
CONTEXT_SNIPPET = 'snippet'
CONTEXT_LINE = 'line'

# Snippet radius around a match (characters on each side)
DISPLAY_RADIUS = 40
FULL_RADIUS = 250


@dataclass(frozen=True)
class ContentSource:
    """One piece of page content: an inline script, an external script or the HTML document"""
    source: str
    code: str
    is_too_large: bool = False

    def to_dict(self):
        return {'source': self.source, 'code': self.code, 'isTooLarge': self.is_too_large}

    @classmethod
    def from_dict(cls, data):
        return cls(
            source=data.get('source', ''),
            code=data.get('code') or '',
            is_too_large=bool(data.get('isTooLarge', False)),
        )


@dataclass
class Occurrence:
    """
    A single sighting of a finding inside one content source.

    Context is stored lazily as an offset/length pair into the decoded text
    of the source and resolved against the content map when displayed.
    """
    source: str
    rule_id: Optional[str]
    index: int
    length: int
    context_mode: Optional[str] = CONTEXT_SNIPPET

    def to_dict(self):
        return {
            'source': self.source,
            'ruleId': self.rule_id,
            'index': self.index,
            'length': self.length,
            'contextMode': self.context_mode,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            source=data.get('source', ''),
            rule_id=data.get('ruleId'),
            index=int(data.get('index', 0)),
            length=int(data.get('length', 0)),
            context_mode=data.get('contextMode', CONTEXT_SNIPPET),
        )


@dataclass
class Finding:
    """A unique value detected within a category, with all of its occurrences"""
    value: str
    category: str
    occurrences: List[Occurrence] = field(default_factory=list)

    @property
    def rule_id(self):
        """Rule id of the first occurrence (secrets only)"""
        return self.occurrences[0].rule_id if self.occurrences else None


def extract_snippet(code, index, length, radius):
    """Cut a window of `radius` characters around a match, newlines collapsed"""
    start = max(0, index - radius)
    end = min(len(code), index + length + radius)
    return f"... {code[start:end].replace(chr(10), ' ')} ..."


@dataclass
class ScanResult:
    """
    Findings of one completed scan, grouped by category and keyed by value,
    plus the decoded text of every scanned source.
    """
    results_by_category: Dict[str, Dict[str, Finding]] = field(default_factory=dict)
    content_map: Dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def empty(cls, categories=()):
        return cls(results_by_category={name: {} for name in categories})

    def add(self, category, value, occurrence):
        """Record an occurrence, creating the finding on first sight"""
        bucket = self.results_by_category.setdefault(category, {})
        finding = bucket.get(value)
        if finding is None:
            finding = Finding(value=value, category=category)
            bucket[value] = finding
        finding.occurrences.append(occurrence)
        return finding

    def get(self, category, value):
        return self.results_by_category.get(category, {}).get(value)

    def iter_findings(self) -> Iterator[Finding]:
        for bucket in self.results_by_category.values():
            yield from bucket.values()

    def findings_count(self):
        """Number of distinct findings across all categories (badge count)"""
        return sum(len(bucket) for bucket in self.results_by_category.values())

    def is_empty(self):
        return self.findings_count() == 0

    def context(self, occurrence, full=False):
        """
        Resolve the display context of an occurrence.

        Args:
            occurrence: Occurrence to resolve
            full: Use the wide (250 chars) window instead of the display one

        Returns:
            str: Context text, or None when the source content was not retained
        """
        code = self.content_map.get(occurrence.source)
        if code is None or occurrence.context_mode is None:
            return None
        if occurrence.context_mode == CONTEXT_LINE:
            return code[occurrence.index:occurrence.index + occurrence.length].strip()
        radius = FULL_RADIUS if full else DISPLAY_RADIUS
        return extract_snippet(code, occurrence.index, occurrence.length, radius)

    def secret_findings(self, descriptions=None):
        """
        Flatten the Potential Secrets category for a compact listing.

        Args:
            descriptions: Optional mapping of rule id to description

        Returns:
            list: One dict per (secret, source) pair
        """
        descriptions = descriptions or {}
        flat = []
        for finding in self.results_by_category.get('Potential Secrets', {}).values():
            seen_sources = set()
            for occ in finding.occurrences:
                if occ.source in seen_sources:
                    continue
                seen_sources.add(occ.source)
                flat.append({
                    'id': occ.rule_id,
                    'description': descriptions.get(occ.rule_id, ''),
                    'secret': finding.value,
                    'source': occ.source,
                })
        return flat

    def without_content(self):
        """Copy of this result that shares findings but drops the content map"""
        return ScanResult(
            results_by_category=self.results_by_category,
            content_map={},
            timestamp=self.timestamp,
        )

    def to_dict(self, include_content=True):
        return {
            'results': {
                category: {
                    value: [occ.to_dict() for occ in finding.occurrences]
                    for value, finding in bucket.items()
                }
                for category, bucket in self.results_by_category.items()
            },
            'contentMap': dict(self.content_map) if include_content else {},
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data):
        result = cls(
            results_by_category={},
            content_map=dict(data.get('contentMap') or {}),
            timestamp=data.get('timestamp') or time.time(),
        )
        for category, bucket in (data.get('results') or {}).items():
            result.results_by_category[category] = {}
            for value, occurrences in bucket.items():
                for occ in occurrences:
                    result.add(category, value, Occurrence.from_dict(occ))
        return result
