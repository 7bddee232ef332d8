"""Expiration worker module exports."""

from .worker import (
    ExpirationWorkerSettings,
    SweepRunResult,
    load_settings,
    run_forever,
    run_sweep_once,
    run_sweep_with_retries,
)

__all__ = [
    "ExpirationWorkerSettings",
    "SweepRunResult",
    "load_settings",
    "run_forever",
    "run_sweep_once",
    "run_sweep_with_retries",
]
