"""Audit ledger."""
