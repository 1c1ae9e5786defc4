"""
Data ingestion module for DPCMatch.

Loads scraped provider exports from CSV, JSON or Parquet files into
provider records, validating them with Great Expectations first.
"""
