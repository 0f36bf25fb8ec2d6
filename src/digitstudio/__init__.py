"""
digitstudio: train, store, compare and inspect small handwritten-digit classifiers.

The storage lifecycle (quota estimation, eviction, metadata index, consistency
audit, import/export) lives in digitstudio.lifecycle; digitstudio.studio is
the operation boundary used by the CLI.
"""

__version__ = "0.1.0"
