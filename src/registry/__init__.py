"""Package index clients: PyPI JSON API, in-memory and caching wrappers."""
