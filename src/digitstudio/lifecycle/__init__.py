"""
Model storage lifecycle.

quota -> eviction -> codec -> index on every save; audit restores the
index/storage correspondence on demand; gateway handles file import/export.
"""
