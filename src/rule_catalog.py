"""
Secret Rule Catalog
Loads the ordered, read-only list of secret signatures from data/secret_rules.yaml
and converts rules to and from the plain payload sent to the scan worker.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Tuple

import yaml

RULES_PATH = Path(__file__).parent.parent / 'data' / 'secret_rules.yaml'

# All secret patterns are matched case-insensitively
RULE_FLAGS = re.IGNORECASE


@dataclass(frozen=True)
class DetectionRule:
    """A named secret signature"""
    id: str
    description: str
    pattern: str
    group: int = 0
    min_entropy: float = 0.0
    flags: int = RULE_FLAGS

    def compile(self):
        return re.compile(self.pattern, self.flags)


def _rule_from_entry(entry):
    return DetectionRule(
        id=str(entry['id']),
        description=entry.get('description', ''),
        pattern=entry['pattern'],
        group=int(entry.get('group') or 0),
        min_entropy=float(entry.get('min_entropy') or 0),
    )


def load_rules(path=None) -> Tuple[DetectionRule, ...]:
    """
    Load secret rules from a YAML file.

    Entries without an id or pattern, and duplicate ids, are skipped with a warning.

    Args:
        path: YAML file (default: data/secret_rules.yaml)

    Returns:
        tuple: DetectionRule objects in file order
    """
    path = Path(path) if path else RULES_PATH
    with open(path, 'r', encoding='utf-8') as f:
        entries = yaml.safe_load(f) or []

    rules = []
    seen_ids = set()
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get('id') or not entry.get('pattern'):
            print(f"[!] Warning: Skipping malformed rule entry: {entry!r}")
            continue
        if entry['id'] in seen_ids:
            print(f"[!] Warning: Duplicate rule id '{entry['id']}' ignored")
            continue
        seen_ids.add(entry['id'])
        rules.append(_rule_from_entry(entry))

    return tuple(rules)


@lru_cache(maxsize=None)
def get_rule_catalog() -> Tuple[DetectionRule, ...]:
    """The built-in catalog, loaded once per process"""
    return load_rules()


def rule_descriptions(rules=None) -> Dict[str, str]:
    """Map rule id -> human description"""
    rules = get_rule_catalog() if rules is None else rules
    return {rule.id: rule.description for rule in rules}


def serialize_rules(rules) -> List[Dict]:
    """Turn rules into plain dicts (pattern source + flags) for the worker payload"""
    return [
        {
            'id': rule.id,
            'description': rule.description,
            'source': rule.pattern,
            'flags': int(rule.flags),
            'group': rule.group,
            'min_entropy': rule.min_entropy,
        }
        for rule in rules
    ]


def deserialize_rules(payload) -> List[DetectionRule]:
    """Rebuild rules from a worker payload, dropping any whose pattern does not compile"""
    rules = []
    for item in payload or []:
        try:
            rule = DetectionRule(
                id=item['id'],
                description=item.get('description', ''),
                pattern=item['source'],
                group=int(item.get('group') or 0),
                min_entropy=float(item.get('min_entropy') or 0),
                flags=int(item.get('flags', RULE_FLAGS)),
            )
            rule.compile()
        except (KeyError, TypeError, ValueError, re.error) as e:
            print(f"[!] Warning: Failed to load rule '{item.get('id', '?')}': {e}")
            continue
        rules.append(rule)
    return rules
