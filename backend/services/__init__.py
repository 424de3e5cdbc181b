"""Shared services: credential hashing and the integrity event ledger."""
