"""Runtime orchestration (job queue, jobs, runners).

This layer is responsible for:
- allocating and queueing jobs
- running them one at a time against the ONI install
- tracking status and captured output until jobs are purged

It should remain independent from the HTTP layer (`oni_agent/api`), so both CLI
and API can reuse the same execution logic.
"""
