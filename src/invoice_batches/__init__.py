"""Invoice batches - reconciliation and ingestion of batch extraction jobs."""

__version__ = "0.1.0"
