"""JSON file sink: one timestamped file per site."""

import json
import logging
import os
from datetime import datetime
from typing import Sequence

from ecom_crawler.models import ProductRecord
from ecom_crawler.storage.base import ExportError

logger = logging.getLogger(__name__)


def safe_site_name(site_name: str) -> str:
    """Lowercase site name usable as a file name."""
    return site_name.replace(" ", "_").replace("/", "_").lower()


class JsonFileSink:
    """Writes each site's products to ``<site>_<timestamp>_products.json``."""

    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def write(self, site_name: str, records: Sequence[ProductRecord]) -> None:
        if not records:
            logger.info("No products found to export for %s", site_name)
            return

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        file_path = os.path.join(self.output_dir, f"{safe_site_name(site_name)}_{timestamp}_products.json")
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in records], f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise ExportError(f"failed to write {file_path} for site {site_name}: {e}") from e

        logger.info("Exported %d products for %s to %s", len(records), site_name, file_path)
