"""Supplier catalog synchronization service."""
