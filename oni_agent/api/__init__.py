"""HTTP API layer (FastAPI).

This module exposes a small, versioned `/api/v1` surface that operators and
tooling can use to:
- queue batch loads, purges and patches, and title loads
- poll job status and fetch captured command output

The API is intentionally thin: core behavior lives in `oni_agent/runtime` and
`oni_agent/batchfix`.
"""
