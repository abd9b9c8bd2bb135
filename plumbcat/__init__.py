"""Plumbing catalog core: category tree, product store and bulk import."""

__version__ = "0.1.0"
