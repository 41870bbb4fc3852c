"""
adminkit - generic CRUD administration over relational tables.

This package provides:
- Column specifications (adminkit.specs)
- Active records, storage backends and admin controllers (adminkit.runtime)
- A command line interface (adminkit.cli)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("adminkit")
except PackageNotFoundError:
    # Running from a source checkout without an install.
    __version__ = "0.0.0"

__all__ = ["__version__"]
