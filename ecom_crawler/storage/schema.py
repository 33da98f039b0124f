"""BigQuery table schemas for crawled products and run metadata."""

from google.cloud.bigquery import SchemaField

PRODUCTS_SCHEMA = [
    SchemaField("run_id", "STRING", mode="REQUIRED"),
    SchemaField("site_name", "STRING", mode="REQUIRED"),
    SchemaField("name", "STRING"),
    SchemaField("price", "STRING"),
    SchemaField("category", "STRING"),
    SchemaField("source_url", "STRING", mode="REQUIRED"),
    SchemaField("scraped_at", "TIMESTAMP", mode="REQUIRED"),
]

RUN_METADATA_SCHEMA = [
    SchemaField("run_id", "STRING", mode="REQUIRED"),
    SchemaField("started_at", "TIMESTAMP", mode="REQUIRED"),
    SchemaField("completed_at", "TIMESTAMP"),
    SchemaField("sites_processed", "INTEGER"),
    SchemaField("sites_failed", "INTEGER"),
    SchemaField("run_mode", "STRING"),
]

TABLE_SCHEMAS = {
    "products": PRODUCTS_SCHEMA,
    "run_metadata": RUN_METADATA_SCHEMA,
}
