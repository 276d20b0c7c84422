"""Derived workout metrics over an append-only record store."""
