"""
Pattern Compiler
Builds the detectors applied during a scan: fixed structural detectors,
the user-configured interesting-parameter detector and one detector per
secret rule.
"""

import re
from typing import Dict, List, Optional

from rule_catalog import get_rule_catalog
from scan_models import CONTEXT_LINE, CONTEXT_SNIPPET

SUBDOMAINS = 'Subdomains'
ENDPOINTS = 'Endpoints'
SOURCE_MAPS = 'Source Maps'
JS_LIBRARIES = 'JS Libraries'
DOM_XSS_SINKS = 'Potential DOM XSS Sinks'
INTERESTING_PARAMETERS = 'Interesting Parameters'
POTENTIAL_SECRETS = 'Potential Secrets'

CATEGORIES = (
    SUBDOMAINS,
    ENDPOINTS,
    SOURCE_MAPS,
    JS_LIBRARIES,
    DOM_XSS_SINKS,
    INTERESTING_PARAMETERS,
    POTENTIAL_SECRETS,
)

DEFAULT_PARAMETERS = [
    'redirect', 'url', 'ret', 'next', 'goto', 'target', 'dest', 'r',
    'debug', 'test', 'admin', 'edit', 'enable',
    'id', 'user', 'account', 'profile',
    'key', 'token', 'api_key', 'secret', 'password', 'email',
    'callback', 'return', 'returnTo', 'return_to', 'redirect_to',
    'redirectTo', 'continue',
]

DOM_SINK_PROPERTIES = ('innerHTML', 'outerHTML', 'src', 'href', 'action', 'style', 'cssText')
DOM_SINK_FUNCTIONS = (
    'insertAdjacentHTML', 'write', 'writeln', 'replace', 'open', 'setAttribute',
    'assign', 'html', 'append', 'prepend', 'after', 'before', 'parseHTML',
    'eval', 'setTimeout', 'setInterval',
)

# (scheme)?(label.label...tld)(/path)? - group 1 is the hostname
SUBDOMAIN_PATTERN = r'\b(?:https?://)?((?:[a-zA-Z0-9-]+\.)+[a-z]{2,63})(?:/[^\s"\'`]*)?'

# Quoted string starting with a single slash - group 2 is the path
ENDPOINT_PATTERN = r'(["\'`])(/(?!/)[a-zA-Z0-9_?&=/\-#.]*)\1'

SOURCE_MAP_PATTERN = r'/[#*]\s?sourceMappingURL=([^\s<*]+)'

JS_LIBRARY_PATTERN = r'/\*!?[ \n][a-zA-Z0-9._\- ]+ v([0-9.]+)'

# One capture group for both branches: property assignment (not comparison) or call
DOM_SINK_PATTERN = (
    r'((?<=\.)(?:' + '|'.join(DOM_SINK_PROPERTIES) + r')\b(?=\s*=(?!=))'
    r'|\b(?:' + '|'.join(DOM_SINK_FUNCTIONS) + r')\b(?=\s*\())'
)


class Detector:
    """A compiled pattern tagged with its category and context extraction mode"""

    def __init__(self, category, regex, group=0, context_mode=CONTEXT_SNIPPET,
                 rule_id=None, min_entropy=0.0):
        self.category = category
        self.regex = regex
        self.group = group
        self.context_mode = context_mode
        self.rule_id = rule_id
        self.min_entropy = min_entropy

    @property
    def is_active(self):
        return self.regex is not None

    @property
    def name(self):
        return self.rule_id or self.category

    def finditer(self, text):
        if self.regex is None:
            return iter(())
        return self.regex.finditer(text)

    def __repr__(self):
        return f"Detector({self.name!r}, group={self.group}, context={self.context_mode})"


def normalize_parameters(parameters) -> List[str]:
    """Strip, drop empties and de-duplicate parameter names, keeping order"""
    seen = set()
    cleaned = []
    for param in parameters or []:
        if not isinstance(param, str):
            continue
        param = param.strip()
        if not param or param.lower() in seen:
            continue
        seen.add(param.lower())
        cleaned.append(param)
    return cleaned


def build_parameter_regex(parameters) -> Optional[re.Pattern]:
    """
    Compile the interesting-parameter alternation.

    Every name is escaped before interpolation, so configuration input cannot
    inject pattern syntax. An empty list compiles to None (no-op detector).
    """
    names = normalize_parameters(parameters)
    if not names:
        return None
    alternation = '|'.join(re.escape(name) for name in names)
    return re.compile(r'[?&"\']((?:' + alternation + r'))\s*[:=]', re.IGNORECASE)


def compile_secret_detectors(rules) -> List[Detector]:
    """One detector per rule. Rules whose pattern fails to compile are skipped."""
    detectors = []
    for rule in rules:
        try:
            compiled = rule.compile()
        except re.error as e:
            print(f"[!] Warning: Failed to compile pattern '{rule.id}': {e}")
            continue
        detectors.append(Detector(
            POTENTIAL_SECRETS,
            compiled,
            group=rule.group,
            context_mode=CONTEXT_SNIPPET,
            rule_id=rule.id,
            min_entropy=rule.min_entropy,
        ))
    return detectors


def compile_patterns(parameters=None, rules=None) -> Dict[str, List[Detector]]:
    """
    Build every detector for one scan.

    Args:
        parameters: Interesting parameter names; None means DEFAULT_PARAMETERS,
            an empty list disables the detector
        rules: Secret rules (default: the built-in catalog)

    Returns:
        dict: category -> list of Detector
    """
    if parameters is None:
        parameters = DEFAULT_PARAMETERS
    if rules is None:
        rules = get_rule_catalog()

    return {
        SUBDOMAINS: [Detector(SUBDOMAINS, re.compile(SUBDOMAIN_PATTERN), group=1)],
        ENDPOINTS: [Detector(ENDPOINTS, re.compile(ENDPOINT_PATTERN), group=2)],
        SOURCE_MAPS: [Detector(SOURCE_MAPS, re.compile(SOURCE_MAP_PATTERN), group=1,
                               context_mode=CONTEXT_LINE)],
        JS_LIBRARIES: [Detector(JS_LIBRARIES, re.compile(JS_LIBRARY_PATTERN), group=0,
                                context_mode=CONTEXT_LINE)],
        DOM_XSS_SINKS: [Detector(DOM_XSS_SINKS, re.compile(DOM_SINK_PATTERN, re.IGNORECASE), group=1)],
        INTERESTING_PARAMETERS: [Detector(INTERESTING_PARAMETERS, build_parameter_regex(parameters), group=1)],
        POTENTIAL_SECRETS: compile_secret_detectors(rules),
    }
