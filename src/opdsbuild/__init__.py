"""opdsbuild: incremental OPDS catalog generation for e-book libraries."""

from opdsbuild.version import __version__

__all__ = ["__version__"]
