"""Alert feed ingestion: HTTP client and payload normalization."""
