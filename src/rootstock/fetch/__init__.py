"""Remote content retrieval helpers shared by registry backends."""

from .http import download, fetch_json

__all__ = ["download", "fetch_json"]
