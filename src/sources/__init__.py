"""Remote source connectors.

This module lists remote entries and manages their fetch, decompress,
and cleanup lifecycle on local storage for the ingest layer.
"""
