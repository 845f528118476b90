"""syncfolio: local-first project records synchronized with a remote document store."""

__version__ = "0.1.0"
