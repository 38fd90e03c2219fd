"""Command-line interface for converting pages and crawling sites."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import CrawlConfig
from .document import CrawlEvent
from .output import page_summary, site_summary

# Configuration directory for global CLI usage
CONFIG_DIR = Path.home() / ".config" / "mdcrawl"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"


def _load_config() -> None:
    """Load .env configuration with fallback to user config directory.

    Search order:
    1. .env in current working directory
    2. ~/.config/mdcrawl/.env
    """
    local_env = Path.cwd() / ".env"
    if local_env.is_file():
        load_dotenv(local_env)
        return

    if CONFIG_ENV_FILE.is_file():
        load_dotenv(CONFIG_ENV_FILE)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mdcrawl",
        description="Convert web pages (or whole sites) into Markdown notes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Single page into ./<title-slug>/index.md
  mdcrawl https://example.com/article

  # Site crawl into notes/<domain>_<date>/
  mdcrawl https://docs.example.com --site --max-depth 2 --max-pages 50 -o notes/

  # Be gentle with the server
  mdcrawl https://example.com --site --concurrency 4 --wait-between-requests 1500

  # Print a JSON summary instead of log lines
  mdcrawl https://example.com --site --json

Environment variables (MDCRAWL_MAX_DEPTH, MDCRAWL_MAX_PAGES, ...) are read
from .env in the working directory or ~/.config/mdcrawl/.env; flags win.
""",
    )

    parser.add_argument("url", help="Page or site root URL")
    parser.add_argument(
        "--site",
        action="store_true",
        help="Crawl the site reachable from URL (breadth-first)",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=".",
        help="Output directory (default: current directory)",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="Maximum link depth for site crawling (default: 3)",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Maximum pages to convert for site crawling (default: 100)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum pages in flight (default: 30)",
    )
    parser.add_argument(
        "--max-sessions",
        type=int,
        default=None,
        help="Maximum browser pages open at once (default: 8)",
    )
    parser.add_argument(
        "--wait-between-requests",
        type=int,
        default=None,
        metavar="MS",
        help="Minimum gap between requests to one domain in ms (default: 500)",
    )
    parser.add_argument(
        "--max-wait-time",
        type=int,
        default=None,
        metavar="MS",
        help="Upper bound for waiting on dynamic content in ms (default: 45000)",
    )
    parser.add_argument(
        "--no-images",
        action="store_true",
        help="Do not download or embed images",
    )
    parser.add_argument(
        "--no-meta",
        action="store_true",
        help="Omit YAML frontmatter",
    )
    parser.add_argument(
        "--no-dynamic",
        action="store_true",
        help="Do not wait for client-side rendering",
    )
    parser.add_argument(
        "--no-wait-for-content",
        action="store_true",
        help="Do not require a main-content element before capturing",
    )
    parser.add_argument(
        "--include-subdomains",
        action="store_true",
        help="Follow links to subdomains of the root domain",
    )
    parser.add_argument(
        "--allowed-domain",
        action="append",
        default=None,
        dest="allowed_domains",
        metavar="DOMAIN",
        help="Additional domain to follow links into (repeatable)",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print a JSON summary to stdout",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace) -> CrawlConfig:
    """Environment defaults overridden by explicit flags."""
    config = CrawlConfig.from_env()
    if args.max_depth is not None:
        config.max_depth = args.max_depth
    if args.max_pages is not None:
        config.max_pages = args.max_pages
    if args.concurrency is not None:
        config.concurrent_limit = args.concurrency
    if args.max_sessions is not None:
        config.max_sessions = args.max_sessions
    if args.wait_between_requests is not None:
        config.wait_between_requests = args.wait_between_requests / 1000.0
    if args.max_wait_time is not None:
        config.max_wait_time = args.max_wait_time / 1000.0
    if args.no_images:
        config.include_images = False
    if args.no_meta:
        config.include_meta = False
    if args.no_dynamic:
        config.handle_dynamic_content = False
    if args.no_wait_for_content:
        config.wait_for_content = False
    if args.include_subdomains:
        config.include_subdomains = True
    if args.allowed_domains:
        config.allowed_domains = list(config.allowed_domains) + list(args.allowed_domains)
    if args.headed:
        config.headless = False
    config.validate()
    return config


def _log_progress(event: CrawlEvent) -> None:
    if event.status == "progress":
        logging.info(
            "Progress: %d/%d (%.1f%%) %s",
            event.processed_count,
            event.total_count,
            event.progress_percent,
            event.current_url or "",
        )
    elif event.status == "error":
        logging.error("Crawl failed: %s", event.message)
    else:
        logging.info("Crawl %s", event.status)


def _install_interrupt_handler(token) -> None:
    """First Ctrl+C stops scheduling; a second one aborts."""
    loop = asyncio.get_running_loop()

    def _on_interrupt() -> None:
        logging.warning("Interrupt received; finishing in-flight pages (Ctrl+C again to abort)")
        token.cancel()
        loop.remove_signal_handler(signal.SIGINT)

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError):
        # No loop signal handlers on this platform; Ctrl+C aborts directly.
        pass


async def _run_async(args: argparse.Namespace, config: CrawlConfig) -> int:
    from . import CancellationToken, convert_url_async, crawl_site_async

    if args.site:
        token = CancellationToken()
        _install_interrupt_handler(token)
        result = await crawl_site_async(
            args.url,
            config=config,
            output_dir=args.output,
            progress=_log_progress,
            cancel_token=token,
        )
        stats = result.stats
        logging.info(
            "Site crawl %s: %d attempted, %d succeeded, %d partial, %d failed, %d skipped",
            result.status,
            stats.processed_count,
            stats.succeeded,
            stats.partial,
            stats.failed,
            stats.skipped,
        )
        for page in result.failed:
            logging.warning("Failed: %s - %s", page.source_url, page.error)
        if result.output is not None:
            logging.info("Index written to %s", result.output.index_path)
        if args.json_output:
            print(json.dumps(site_summary(result), indent=2, ensure_ascii=False))
        return 0

    logging.info("Converting: %s", args.url)
    conversion = await convert_url_async(args.url, config=config, output_dir=args.output)
    page = conversion.page
    if args.json_output:
        summary = page_summary(page)
        summary["output"] = (
            str(conversion.output.index_path) if conversion.output is not None else None
        )
        print(json.dumps(summary, indent=2, ensure_ascii=False))
    if not page.ok:
        logging.warning("Conversion failed: %s", page.error)
    if conversion.output is None:
        return 0 if page.ok else 1
    # Failed pages still get a report; only setup errors exit non-zero.
    logging.info("Wrote %s", conversion.output.index_path)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the mdcrawl command."""
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    _load_config()

    try:
        config = _build_config(args)
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    try:
        return asyncio.run(_run_async(args, config))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except Exception as exc:
        logging.error("Error: %s", exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
