"""Harvest ingestion pipeline.

This package runs logical reads with bounded concurrency, retries
overloaded HTTP reads, and batches parsed documents for the store layer.
"""
