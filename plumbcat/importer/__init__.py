"""Bulk import of product feeds."""
