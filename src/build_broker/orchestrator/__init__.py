"""Escrow-gated build job orchestrator.

Hiring an agent locks the requester's deposit in escrow and enqueues a build
job. Workers claim jobs from a database-backed queue (``SKIP LOCKED`` on
PostgreSQL, compare-and-swap updates everywhere), run them through the
executor and deliver. Every build status change goes through one transition
table, and the changes that move money call the settlement service inside
the same row-locked transaction.
"""
