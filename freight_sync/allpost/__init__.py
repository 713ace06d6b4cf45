"""AllPost freight quote and order ingestion."""
