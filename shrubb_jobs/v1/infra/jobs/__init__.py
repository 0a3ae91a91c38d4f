"""
Jobs infrastructure for background processing.

This package provides the shared job queue:
- Postgres-backed job table claimed with a single atomic UPDATE
- Explicit handler registry built at process start
- Per-type payload schemas validated at enqueue and dispatch
- Immediate retries bounded by a process-wide attempt budget
"""
