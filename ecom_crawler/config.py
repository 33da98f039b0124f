"""Configuration loading for the e-commerce crawler."""

import logging
import os
from typing import Any

import yaml

from ecom_crawler.models import SiteConfig

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = "config/config.yaml"

DEFAULT_USER_AGENT = "EcomCrawler/1.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
DEFAULT_DELAY_MS = 1000
DEFAULT_PARALLELISM = 2
DEFAULT_PAGINATION_DEPTH = 5

_DEFAULTS: dict[str, Any] = {
    "site_list_path": "config/sites.json",
    "run_mode": "local",
    "output": {"sink": "json", "directory": "output_data"},
    "crawl": {"channel_buffer_per_site": 200, "sink_concurrency": 1},
}

_REQUIRED_SITE_FIELDS = ("name", "base_url", "product_selector", "name_selector", "price_selector")

# JSON key -> SiteConfig field, where they differ
_FIELD_ALIASES = {
    "async": "async_requests",
    "chromedp_timeout_sec": "browser_timeout_sec",
}


class ConfigError(ValueError):
    """Raised for unreadable or invalid configuration."""


def load_config(config_path: str | None = None) -> dict[str, Any]:
    """Load application configuration from YAML with environment overrides.

    Args:
        config_path: Path to config YAML. Falls back to CONFIG_PATH env var,
                     then to config/config.yaml. A missing default file
                     yields the built-in defaults.

    Returns:
        Merged configuration dictionary.
    """
    explicit = config_path or os.environ.get("CONFIG_PATH")
    path = explicit or _DEFAULT_CONFIG_PATH

    config: dict[str, Any] = {
        key: dict(value) if isinstance(value, dict) else value for key, value in _DEFAULTS.items()
    }
    if os.path.exists(path) or explicit:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        for key, value in loaded.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value
    else:
        logger.info("No config file at %s, using defaults", path)

    # Environment variable overrides
    if os.environ.get("SITE_LIST_PATH"):
        config["site_list_path"] = os.environ["SITE_LIST_PATH"]
    if os.environ.get("OUTPUT_DIR"):
        config["output"]["directory"] = os.environ["OUTPUT_DIR"]
    if os.environ.get("RESULT_SINK"):
        config["output"]["sink"] = os.environ["RESULT_SINK"]
    if os.environ.get("GCP_PROJECT_ID"):
        config.setdefault("gcp", {})["project_id"] = os.environ["GCP_PROJECT_ID"]
    if os.environ.get("GCP_REGION"):
        config.setdefault("gcp", {})["region"] = os.environ["GCP_REGION"]
    if os.environ.get("BIGQUERY_DATASET"):
        config.setdefault("gcp", {})["bigquery_dataset"] = os.environ["BIGQUERY_DATASET"]
    if os.environ.get("RUN_MODE"):
        config["run_mode"] = os.environ["RUN_MODE"]

    return config


def load_sites(site_list_path: str) -> list[SiteConfig]:
    """Load site configurations from a JSON (or YAML) array.

    Args:
        site_list_path: Path to the site list file.

    Returns:
        List of SiteConfig objects with defaults applied.

    Raises:
        ConfigError: If the file is malformed or a site is invalid.
    """
    logger.info("Loading sites from %s", site_list_path)
    try:
        with open(site_list_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse site configs from {site_list_path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("sites", [])
    if not isinstance(data, list):
        raise ConfigError(f"Site config file {site_list_path} must contain a list of sites")

    sites = [parse_site(entry) for entry in data]

    names = [site.name for site in sites]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate site names: {', '.join(duplicates)}")

    logger.info("Loaded %d sites", len(sites))
    return sites


def parse_site(entry: dict[str, Any]) -> SiteConfig:
    """Build a SiteConfig from one raw entry, applying defaults and validation."""
    if not isinstance(entry, dict):
        raise ConfigError(f"Site entry must be a mapping, got {type(entry).__name__}")

    known = set(SiteConfig.__dataclass_fields__)
    values: dict[str, Any] = {}
    for key, value in entry.items():
        field_name = _FIELD_ALIASES.get(key, key)
        if field_name not in known:
            logger.warning("Ignoring unknown site config key %r", key)
            continue
        if value is not None:
            values[field_name] = value

    missing = [f for f in _REQUIRED_SITE_FIELDS if not str(values.get(f, "")).strip()]
    if missing:
        raise ConfigError(f"Site {values.get('name', '<unnamed>')!r} is missing {', '.join(missing)}")

    domains = values.get("allowed_domains") or []
    if isinstance(domains, str):
        domains = [domains]
    values["allowed_domains"] = frozenset(d.strip().lower() for d in domains if d and d.strip())
    if not values["allowed_domains"]:
        raise ConfigError(f"Site {values['name']!r} has no allowed_domains")

    if not values.get("user_agent"):
        values["user_agent"] = DEFAULT_USER_AGENT
    if not values.get("delay_ms"):
        values["delay_ms"] = DEFAULT_DELAY_MS
    if not values.get("parallelism"):
        values["parallelism"] = DEFAULT_PARALLELISM
    if not values.get("max_depth") and values.get("next_page_selector"):
        values["max_depth"] = DEFAULT_PAGINATION_DEPTH
    if not values.get("product_container_selector"):
        values["product_container_selector"] = "body"

    try:
        return SiteConfig(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid site config {values['name']!r}: {e}") from e
