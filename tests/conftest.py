"""
Main conftest file that re-exports fixtures from the modular fixture files.
"""

from tests.fixtures.client import app, client, fake_executor, metrics, registry, settings

__all__ = ["app", "client", "fake_executor", "metrics", "registry", "settings"]
