"""
Domain Classifier
Decides whether a discovered hostname belongs to the scanned site
"""

from urllib.parse import urlparse

# Second-level labels that act as public suffixes (example.co.uk, example.com.au)
SECOND_LEVEL_SUFFIXES = frozenset({'co', 'com', 'gov', 'org', 'net', 'ac', 'edu'})


def extract_hostname(url_or_host):
    """Return the lower-cased hostname of a URL, or the value itself if it is a bare host"""
    if not url_or_host:
        return ''
    if '://' in url_or_host:
        return (urlparse(url_or_host).hostname or '').lower()
    return url_or_host.split('/')[0].split(':')[0].lower()


def get_base_domain(hostname):
    """
    Registrable base domain of a hostname.

    app.example.com   -> example.com
    shop.example.co.uk -> example.co.uk
    localhost          -> localhost
    """
    parts = hostname.split('.')
    if len(parts) <= 2:
        return hostname
    if parts[-2] in SECOND_LEVEL_SUFFIXES:
        return '.'.join(parts[-3:])
    return '.'.join(parts[-2:])


def get_domain_info(url_or_host):
    """
    Args:
        url_or_host: Page URL or hostname

    Returns:
        tuple: (current_hostname, base_domain)
    """
    hostname = extract_hostname(url_or_host)
    return hostname, get_base_domain(hostname)


def is_valid_subdomain(candidate, current_hostname, base_domain):
    """True if candidate is the page host, the base domain, or a subdomain of either"""
    if not candidate or not current_hostname:
        return False
    candidate = candidate.lower()
    return (
        candidate == current_hostname
        or candidate.endswith('.' + current_hostname)
        or candidate == base_domain
        or candidate.endswith('.' + base_domain)
    )
