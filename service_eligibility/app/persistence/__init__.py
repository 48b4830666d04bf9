"""
Persistence package for the Eligibility Service.

PostgreSQL (asyncpg) storage for TOC rulepacks, compensation bands,
seated fare equivalents, evaluations and the outbox table.
"""
