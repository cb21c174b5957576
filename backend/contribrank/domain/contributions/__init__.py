"""Contribution day ingestion, totals aggregation and refresh orchestration."""
