"""MCP server exposing page conversion and site crawling.

Provides tools for:
- Converting a single web page into a Markdown note folder
- Crawling a site into ``<domain>_<date>/`` with an index

Supports both STDIO and HTTP transports.

Usage:
    # STDIO (for desktop MCP clients)
    python -m mdcrawl.mcp_server

    # HTTP (for remote access)
    python -m mdcrawl.mcp_server --transport http --port 8000

    # Or via FastMCP CLI
    fastmcp run mdcrawl/mcp_server.py:mcp --transport http --port 8000

Environment Variables:
    MDCRAWL_OUTPUT_DIR: Default output directory (default: current directory)
    MDCRAWL_*: Crawl settings, see ``CrawlConfig.from_env``
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

from .config import CrawlConfig
from .output import page_summary, site_summary

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
LOGGER = logging.getLogger(__name__)

# Load .env before reading environment variables
load_dotenv()

DEFAULT_OUTPUT_DIR = os.getenv("MDCRAWL_OUTPUT_DIR", ".")

# Create the MCP server
mcp = FastMCP(
    name="Markdown Web Crawler",
    instructions="""
    Converts web pages into Markdown notes on the server's filesystem.

    Tools:
       - convert_url: Convert one page into <title-slug>/index.md plus assets/
       - crawl_site: Crawl a site breadth-first into <domain>_<date>/ with
         page1.md ... pageN.md, a shared assets/ folder and index.md

    Both tools return a JSON summary with output paths and per-page status.
    """,
)


def _format_timestamp() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _config_for(
    *,
    max_depth: Optional[int] = None,
    max_pages: Optional[int] = None,
    include_images: Optional[bool] = None,
    include_meta: Optional[bool] = None,
    include_subdomains: Optional[bool] = None,
) -> CrawlConfig:
    config = CrawlConfig.from_env()
    if max_depth is not None:
        config.max_depth = max_depth
    if max_pages is not None:
        config.max_pages = max_pages
    if include_images is not None:
        config.include_images = include_images
    if include_meta is not None:
        config.include_meta = include_meta
    if include_subdomains is not None:
        config.include_subdomains = include_subdomains
    return config


def _error_payload(url: str, exc: Exception) -> str:
    return json.dumps(
        {"url": url, "status": "error", "error": str(exc), "at": _format_timestamp()},
        indent=2,
        ensure_ascii=False,
    )


# =============================================================================
# TOOLS
# =============================================================================


@mcp.tool
async def convert_url(
    url: str,
    output_dir: Optional[str] = None,
    include_images: bool = True,
    include_meta: bool = True,
    return_markdown: bool = False,
):
    """
    Convert one web page into a Markdown note.

    Args:
        url: Page to convert
        output_dir: Directory where <title-slug>/ is created (default: MDCRAWL_OUTPUT_DIR)
        include_images: Download images into assets/ (default: true)
        include_meta: Add YAML frontmatter (default: true)
        return_markdown: Also include the Markdown text in the response (default: false)

    Returns:
        JSON summary with status, title and the written index path.
    """
    from . import convert_url_async

    LOGGER.info("Converting %s", url)
    try:
        config = _config_for(include_images=include_images, include_meta=include_meta)
        conversion = await convert_url_async(
            url, config=config, output_dir=output_dir or DEFAULT_OUTPUT_DIR
        )
    except Exception as exc:
        LOGGER.error("Conversion of %s failed: %s", url, exc)
        return _error_payload(url, exc)

    payload: Dict[str, Any] = page_summary(conversion.page)
    payload["converted_at"] = _format_timestamp()
    payload["output"] = (
        str(conversion.output.index_path) if conversion.output is not None else None
    )
    if return_markdown:
        payload["markdown"] = conversion.page.markdown
    return json.dumps(payload, indent=2, ensure_ascii=False)


@mcp.tool
async def crawl_site(
    url: str,
    max_depth: int = 3,
    max_pages: int = 100,
    include_subdomains: bool = False,
    include_images: bool = True,
    output_dir: Optional[str] = None,
):
    """
    Crawl a website breadth-first and write every page as Markdown.

    Args:
        url: Root URL to start from
        max_depth: Maximum link depth (default: 3, 0 = root page only)
        max_pages: Maximum number of pages (default: 100)
        include_subdomains: Follow links into subdomains (default: false)
        include_images: Download images into the shared assets/ (default: true)
        output_dir: Directory where <domain>_<date>/ is created (default: MDCRAWL_OUTPUT_DIR)

    Returns:
        JSON summary with the index path, crawl statistics and per-page status.

    Examples:
        crawl_site(url="https://docs.example.com")
        crawl_site(url="https://docs.example.com", max_depth=1, max_pages=20)
    """
    from . import crawl_site_async

    LOGGER.info("Crawling site %s (max_depth=%d, max_pages=%d)", url, max_depth, max_pages)
    try:
        config = _config_for(
            max_depth=max_depth,
            max_pages=max_pages,
            include_images=include_images,
            include_subdomains=include_subdomains,
        )
        result = await crawl_site_async(
            url, config=config, output_dir=output_dir or DEFAULT_OUTPUT_DIR
        )
    except Exception as exc:
        LOGGER.error("Site crawl of %s failed: %s", url, exc)
        return _error_payload(url, exc)

    payload = site_summary(result)
    payload["crawled_at"] = _format_timestamp()
    return json.dumps(payload, indent=2, ensure_ascii=False)


def main():
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the Markdown web crawler MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    MDCRAWL_OUTPUT_DIR  Default output directory (default: current directory)

Examples:
    # STDIO transport (default)
    python -m mdcrawl.mcp_server

    # HTTP transport (for remote access)
    python -m mdcrawl.mcp_server --transport http --port 8000

    # Custom host/port
    python -m mdcrawl.mcp_server --transport http --host 0.0.0.0 --port 9000
""",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )

    args = parser.parse_args()

    LOGGER.info("Output directory: %s", DEFAULT_OUTPUT_DIR)

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
