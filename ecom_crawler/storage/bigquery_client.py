"""BigQuery sink for crawled products.

Creates the dataset and tables on demand, streams each site's products into
the ``products`` table and keeps one ``run_metadata`` row per run.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from google.cloud import bigquery
from google.cloud.exceptions import NotFound

from ecom_crawler.models import ProductRecord
from ecom_crawler.storage.base import ExportError
from ecom_crawler.storage.schema import TABLE_SCHEMAS

logger = logging.getLogger(__name__)

# insert_rows_json request size stays well under the streaming limit
_INSERT_BATCH_SIZE = 500


class BigQueryClient:
    """Client for all BigQuery operations of the crawler."""

    def __init__(
        self,
        project_id: str,
        dataset_id: str,
        location: str = "us-east4",
        run_id: Optional[str] = None,
        client: Optional[bigquery.Client] = None,
    ):
        self.project_id = project_id
        self.dataset_id = dataset_id
        self.location = location
        self.run_id = run_id
        self.client = client or bigquery.Client(project=project_id)
        self.dataset_ref = f"{project_id}.{dataset_id}"

    def ensure_tables_exist(self) -> None:
        """Create dataset and all tables if they don't exist."""
        dataset = bigquery.Dataset(self.dataset_ref)
        dataset.location = self.location
        try:
            self.client.get_dataset(self.dataset_ref)
            logger.info("Dataset %s already exists", self.dataset_ref)
        except NotFound:
            self.client.create_dataset(dataset)
            logger.info("Created dataset %s", self.dataset_ref)

        for table_name, schema in TABLE_SCHEMAS.items():
            table_ref = f"{self.dataset_ref}.{table_name}"
            try:
                self.client.get_table(table_ref)
                logger.debug("Table %s already exists", table_ref)
            except NotFound:
                self.client.create_table(bigquery.Table(table_ref, schema=schema))
                logger.info("Created table %s", table_ref)

    # ── Products ───────────────────────────────────────────────────

    def write(self, site_name: str, records: Sequence[ProductRecord]) -> None:
        """ResultSink entry point: insert one site's products for the current run."""
        if not records:
            return
        rows = [product_row(self.run_id or "", site_name, r) for r in records]
        self.insert_products_batch(rows)
        logger.info("Inserted %d products for %s into BigQuery", len(rows), site_name)

    def insert_products_batch(self, rows: list[dict[str, Any]]) -> None:
        """Batch insert product rows, raising ExportError on any row error."""
        table_ref = f"{self.dataset_ref}.products"
        for start in range(0, len(rows), _INSERT_BATCH_SIZE):
            batch = rows[start:start + _INSERT_BATCH_SIZE]
            errors = self.client.insert_rows_json(table_ref, batch)
            if errors:
                logger.error("BigQuery insert errors (products): %s", errors)
                raise ExportError(f"{len(errors)} rows rejected by {table_ref}")
            logger.debug("Inserted %d products rows", len(batch))

    # ── Run metadata ───────────────────────────────────────────────

    def insert_run_metadata(self, run_id: str, started_at: datetime, run_mode: str) -> None:
        """Insert initial run metadata record."""
        table_ref = f"{self.dataset_ref}.run_metadata"
        rows = [
            {
                "run_id": run_id,
                "started_at": started_at.isoformat(),
                "run_mode": run_mode,
            }
        ]
        errors = self.client.insert_rows_json(table_ref, rows)
        if errors:
            logger.error("BigQuery insert errors (run_metadata): %s", errors)

    def update_run_completed(self, run_id: str, sites_processed: int, sites_failed: int) -> None:
        """Update run metadata with completion info via DML."""
        table_ref = f"{self.dataset_ref}.run_metadata"
        query = f"""
            UPDATE `{table_ref}`
            SET completed_at = @completed_at,
                sites_processed = @sites_processed,
                sites_failed = @sites_failed
            WHERE run_id = @run_id
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("completed_at", "TIMESTAMP", datetime.now(timezone.utc)),
                bigquery.ScalarQueryParameter("sites_processed", "INT64", sites_processed),
                bigquery.ScalarQueryParameter("sites_failed", "INT64", sites_failed),
                bigquery.ScalarQueryParameter("run_id", "STRING", run_id),
            ]
        )
        self.client.query(query, job_config=job_config).result()
        logger.info("Updated run %s: processed=%d, failed=%d", run_id, sites_processed, sites_failed)


def product_row(run_id: str, site_name: str, record: ProductRecord) -> dict[str, Any]:
    """Flatten a ProductRecord into a ``products`` table row."""
    return {
        "run_id": run_id,
        "site_name": site_name,
        "name": record.name,
        "price": record.price,
        "category": record.category or None,
        "source_url": record.source_url,
        "scraped_at": record.scraped_at.isoformat(),
    }
