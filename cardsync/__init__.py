"""
cardsync package initializer.

This package synchronizes trading-card catalog and pricing data from external
providers (a paginated JSON API and a per-group CSV feed) into a local store.

The package exposes a ``__version__`` attribute indicating the installed
version of cardsync. The version is read from pyproject.toml via
importlib.metadata – this is the single source of truth.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cardsync")
except PackageNotFoundError:
    # Package is not installed (running from source without pip install -e .)
    __version__ = "0.0.0.dev"

__all__: list[str] = ["__version__"]
