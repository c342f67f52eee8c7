"""Pydantic models for ledger records and request bodies."""
