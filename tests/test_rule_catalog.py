import os
import re
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from rule_catalog import (DetectionRule, deserialize_rules, get_rule_catalog, load_rules,
                          rule_descriptions, serialize_rules)


def test_builtin_catalog_loads_and_compiles():
    rules = get_rule_catalog()
    assert len(rules) == 135
    ids = [rule.id for rule in rules]
    assert len(ids) == len(set(ids))
    for rule in rules:
        assert rule.compile() is not None


def test_known_rules_present():
    rules = {rule.id: rule for rule in get_rule_catalog()}
    assert rules['aws-access-token'].group == 1
    assert rules['aws-access-token'].min_entropy == 3
    assert rules['gcp-api-key'].compile().search('key="AIzaSyD-FAKEKEYFAKEKEYFAKEKEYFAKEKEYFAKE"')


def test_descriptions_map():
    descriptions = rule_descriptions()
    assert 'GCP API key' in descriptions['gcp-api-key']


def test_malformed_and_duplicate_entries_skipped(tmp_path):
    path = tmp_path / 'rules.yaml'
    path.write_text(
        "- id: one\n"
        "  description: First\n"
        "  pattern: 'one_([a-z]{4})'\n"
        "  group: 1\n"
        "- id: one\n"
        "  pattern: 'dup'\n"
        "- description: no id\n"
        "  pattern: 'x'\n"
        "- id: two\n"
        "  pattern: 'two'\n"
        "  min_entropy: 2.5\n",
        encoding='utf-8',
    )
    rules = load_rules(path)
    assert [rule.id for rule in rules] == ['one', 'two']
    assert rules[0].description == 'First'
    assert rules[1].min_entropy == 2.5


def test_serialized_rules_rebuild_equal_patterns():
    rules = get_rule_catalog()[:10]
    payload = serialize_rules(rules)
    assert set(payload[0]) == {'id', 'description', 'source', 'flags', 'group', 'min_entropy'}
    assert payload[0]['flags'] == int(re.IGNORECASE)
    assert list(deserialize_rules(payload)) == list(rules)


def test_deserialize_skips_broken_pattern():
    payload = serialize_rules([DetectionRule('ok', '', 'abc')])
    payload.append({'id': 'broken', 'source': '(unclosed', 'flags': 0})
    payload.append({'description': 'missing id'})
    rules = deserialize_rules(payload)
    assert [rule.id for rule in rules] == ['ok']
