"""Data pipeline for importing historical analytics data."""
