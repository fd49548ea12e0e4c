"""
Release Orchestration app.

This app drives a release through its stages with a periodic, lock-guarded tick:
KICKOFF → REGRESSION → POST_REGRESSION

Key concepts:
- Persistent task graph per stage (and per regression cycle), created idempotently
- State machine: PENDING → IN_PROGRESS → AWAITING_CALLBACK → COMPLETED/FAILED
- Every state change is a conditional update, safe under concurrent ticks and pollers
- Monitoring signals at every task boundary
"""
