"""Persistence layer: tables, engine policy and migrations."""
