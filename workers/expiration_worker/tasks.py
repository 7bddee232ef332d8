"""Expiration worker tasks."""

from __future__ import annotations

from workers.expiration_worker.worker import (
    ExpirationWorkerSettings,
    SweepRunResult,
    load_settings,
    run_sweep_with_retries,
)


def expiration_tick(settings: ExpirationWorkerSettings | None = None) -> SweepRunResult:
    """Run a single sweep trigger, for cron-style schedulers."""
    resolved_settings = settings or load_settings()
    return run_sweep_with_retries(resolved_settings)
