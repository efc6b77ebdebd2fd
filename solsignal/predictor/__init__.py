"""Per-day decision pipeline and probability aggregation."""
