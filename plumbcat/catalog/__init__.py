"""Persistent catalog: category tree and product store."""
