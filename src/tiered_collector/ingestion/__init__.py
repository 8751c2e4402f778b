"""Upstream collection capability."""

from .http_collector import HttpCollectorClient

__all__ = ["HttpCollectorClient"]
