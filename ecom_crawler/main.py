"""CLI entry point for the e-commerce crawler.

Usage:
    python -m ecom_crawler.main [--config config/config.yaml] [--sites sites.json]
                                [--output DIR] [--sink json|bigquery] [--log-level info] [-v]
"""

import argparse
import asyncio
import logging
import sys

from ecom_crawler.config import ConfigError, load_config
from ecom_crawler.orchestrator import run_crawl


def main() -> None:
    """Parse arguments and run the crawl."""
    parser = argparse.ArgumentParser(
        description="EcomCrawler: concurrent product crawler for configured e-commerce sites",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to configuration YAML (default: $CONFIG_PATH or config/config.yaml)",
    )
    parser.add_argument("--sites", help="Path to the JSON site config list (overrides config)")
    parser.add_argument("--output", help="Directory to save scraped data (json sink)")
    parser.add_argument("--sink", choices=["json", "bigquery"], help="Result sink (overrides config)")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else getattr(logging, args.log_level.upper())
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    # Suppress noisy libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("EcomCrawler starting")

    try:
        config = load_config(args.config)
        if args.sites:
            config["site_list_path"] = args.sites
        if args.output:
            config["output"]["directory"] = args.output
        if args.sink:
            config["output"]["sink"] = args.sink

        summary = asyncio.run(run_crawl(config))
    except (FileNotFoundError, ConfigError) as e:
        logger.error("Failed to load configuration: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Crawl interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error("Crawl failed: %s", e, exc_info=True)
        sys.exit(1)

    for result in summary.site_results:
        logger.info(
            "Site %s: status=%s products=%d%s",
            result.site_name,
            result.status,
            len(summary.buckets.get(result.site_name, ())),
            f" error={result.error}" if result.error else "",
        )
    logger.info("EcomCrawler finished. Total products scraped: %d", summary.total_records)

    if summary.exports_failed:
        logger.error("Some exports failed: %s", ", ".join(sorted(summary.failed_exports)))
        sys.exit(1)


if __name__ == "__main__":
    main()
