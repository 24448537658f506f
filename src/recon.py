"""
JS Recon Scanner - CLI
Scans a web page (its HTML, inline scripts and external scripts) for
subdomains, endpoints, secrets, DOM XSS sinks and other recon findings.
"""

import argparse
import asyncio
import sys
from collections import defaultdict
from pathlib import Path

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from content_gatherer import HttpPageProvider
from exporter import default_export_name, save_export
from pattern_compiler import (DOM_XSS_SINKS, ENDPOINTS, INTERESTING_PARAMETERS, JS_LIBRARIES,
                              POTENTIAL_SECRETS, SOURCE_MAPS, SUBDOMAINS)
from rule_catalog import rule_descriptions
from scan_coordinator import ConsoleNotifier, NullNotifier
from settings import build_coordinator, load_settings
from sourcemap_parser import ERROR_LOG_KEY, reconstruct_source, resolve_source_map_url, save_reconstructed
from utils import is_scannable_url

CLI_TAB_ID = 'cli'

# category -> (heading, colour)
SUMMARY_SECTIONS = [
    (SUBDOMAINS, '[+] Subdomains', Fore.GREEN),
    (ENDPOINTS, '[>] Endpoints & Paths', Fore.CYAN),
    (DOM_XSS_SINKS, '[!] Potential DOM XSS Sinks', Fore.YELLOW),
    (POTENTIAL_SECRETS, '[!] Potential Secrets', Fore.RED),
    (INTERESTING_PARAMETERS, '[?] Interesting Parameters', Fore.MAGENTA),
    (JS_LIBRARIES, '[L] JS Libraries', Fore.BLUE),
    (SOURCE_MAPS, '[M] Source Maps', Fore.WHITE),
]


class FetchProgress:
    """tqdm bar driven by the script fetch progress callback"""

    def __init__(self, desc="Fetching scripts"):
        self.desc = desc
        self.bar = None

    def __call__(self, completed, total):
        if self.bar is None:
            self.bar = tqdm(total=total, desc=self.desc, unit="script", leave=False)
        self.bar.n = completed
        self.bar.refresh()

    def close(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None


def parse_cli_args(argv=None):
    parser = argparse.ArgumentParser(
        description='JS Recon Scanner - find secrets, endpoints and subdomains in web pages',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan a live page
  python src/recon.py https://example.com/

  # Scan saved HTML as if it was served from a URL
  python src/recon.py --html-file page.html --url https://shop.example.com/

  # Custom parameters and JSON export
  python src/recon.py https://example.com/ --params next,token --export
        """
    )

    parser.add_argument('url', nargs='?', help='Page URL to scan')
    parser.add_argument('--url', dest='page_url', help='Page URL the --html-file was loaded from')
    parser.add_argument('--html-file', help='Scan this HTML file instead of downloading the page')
    parser.add_argument('--params', help='Comma separated interesting parameter names')
    parser.add_argument('--export', nargs='?', const='', default=None, metavar='PATH',
                        help='Export results as JSON (default name: recon_<hostname>.json)')
    parser.add_argument('--source-maps', metavar='DIR',
                        help='Reconstruct sources of discovered source maps into DIR')
    parser.add_argument('--force', action='store_true', help='Ignore cached results and rescan')
    parser.add_argument('--storage', help='Cache storage URL (e.g. sqlite:///data/scan_cache.db)')
    parser.add_argument('--no-color', action='store_true', help='Disable coloured output')
    parser.add_argument('--verbose', action='store_true', help='Print coordinator diagnostics')

    args = parser.parse_args(argv)
    args.target = args.url or args.page_url
    if args.html_file and not args.target:
        parser.error('--html-file requires the page URL (positional or --url)')
    return args


def _paint(text, colour, use_color):
    return f"{colour}{text}{Style.RESET_ALL}" if use_color else text


def print_summary(result, use_color=True):
    """Print findings grouped by category"""
    descriptions = rule_descriptions()
    print(f"\n{'=' * 70}")
    print(f"SCAN SUMMARY: {result.findings_count()} finding(s)")
    print(f"{'=' * 70}")

    for category, heading, colour in SUMMARY_SECTIONS:
        bucket = result.results_by_category.get(category, {})
        if not bucket:
            continue
        print(_paint(f"\n{heading} ({len(bucket)})", colour, use_color))

        if category == POTENTIAL_SECRETS:
            by_rule = defaultdict(list)
            for finding in bucket.values():
                by_rule[finding.rule_id].append(finding)
            for rule_id, findings in by_rule.items():
                print(f"  {rule_id} - {descriptions.get(rule_id, '')}")
                for finding in findings:
                    sources = sorted({occ.source for occ in finding.occurrences})
                    print(f"     └─ {finding.value}  [{', '.join(sources)}]")
            continue

        for finding in bucket.values():
            value = finding.value
            if category == SOURCE_MAPS:
                value = resolve_source_map_url(value, finding.occurrences[0].source)
            print(f"  • {value} ({len(finding.occurrences)}x)")


def reconstruct_source_maps(result, output_dir):
    """Fetch every discovered source map and save its original sources"""
    written = 0
    for finding in result.results_by_category.get(SOURCE_MAPS, {}).values():
        map_url = resolve_source_map_url(finding.value, finding.occurrences[0].source)
        if not map_url.startswith(('http://', 'https://')):
            print(f"[i] Skipping source map without absolute URL: {map_url}")
            continue
        print(f"[+] Reconstructing sources from {map_url}")
        sources = reconstruct_source(map_url)
        if ERROR_LOG_KEY in sources:
            print(f"[!] Warning: {sources[ERROR_LOG_KEY]}")
            continue
        written += len(save_reconstructed(sources, output_dir))
    print(f"[+] Saved {written} reconstructed source file(s) to {output_dir}")
    return written


def main(argv=None):
    """CLI entry point"""
    args = parse_cli_args(argv)
    use_color = not args.no_color
    colorama_init(strip=not use_color)

    if not args.target:
        print("[✗] No URL given. Use: python src/recon.py <url>")
        return 2
    if not is_scannable_url(args.target):
        print(f"[✗] Not a scannable page (http/https only): {args.target}")
        return 2

    print("""
    ╔════════════════════════════════════════════════════════════════════╗
    ║   JS RECON SCANNER                                                 ║
    ║   Secrets, endpoints and subdomains from page JavaScript          ║
    ╚════════════════════════════════════════════════════════════════════╝
    """)

    settings = load_settings()
    if args.params is not None:
        settings.parameters = [p.strip() for p in args.params.split(',') if p.strip()]
    if args.storage:
        settings.storage_url = args.storage
    settings.verbose = settings.verbose or args.verbose

    provider = HttpPageProvider(timeout=settings.fetch_timeout)
    if args.html_file:
        html = Path(args.html_file).read_text(encoding='utf-8', errors='replace')
        provider.set_html(CLI_TAB_ID, args.target, html)

    progress = FetchProgress()
    notifier = ConsoleNotifier() if settings.verbose else NullNotifier()
    coordinator = build_coordinator(settings, provider, notifier=notifier)
    coordinator.progress_callback = progress

    print(f"[+] Target: {args.target}")
    try:
        result = asyncio.run(coordinator.scan_page(CLI_TAB_ID, args.target, force=args.force))
    finally:
        progress.close()
        coordinator.worker.shutdown()

    if result is None:
        status = coordinator.get_page_status(CLI_TAB_ID, args.target)
        print(f"[✗] Scan did not complete ({status['status']}): {status['message'] or 'no result'}")
        return 1

    print_summary(result, use_color)

    if args.export is not None:
        export_path = args.export or default_export_name(args.target)
        save_export(result, export_path)

    if args.source_maps:
        reconstruct_source_maps(result, args.source_maps)

    return 0


if __name__ == "__main__":
    sys.exit(main())
