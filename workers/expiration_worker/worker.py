"""Expiration worker: periodically triggers the order expiration sweep."""

from __future__ import annotations

import json
import logging
import os
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Callable

ENV_PREFIX = "STOREFRONT_EXPIRATION_WORKER_"
SWEEP_PATH = "/api/v1/jobs/expire-orders"

logger = logging.getLogger("storefront.expiration_worker")


@dataclass(frozen=True)
class ExpirationWorkerSettings:
    api_base_url: str
    interval_s: int
    timeout_s: float
    trigger_token: str | None
    max_retries: int
    retry_backoff_s: float


@dataclass(frozen=True)
class SweepRunResult:
    ok: bool
    updated: int
    status_code: int | None = None
    error: str | None = None
    attempts: int = 1


def load_settings(env: dict[str, str] | None = None) -> ExpirationWorkerSettings:
    source = env if env is not None else os.environ

    def read(name: str, default: str) -> str:
        return source.get(f"{ENV_PREFIX}{name}", default).strip()

    api_base_url = read("API_BASE_URL", "http://localhost:8000")
    interval_s = int(read("INTERVAL_S", "300"))
    timeout_s = float(read("TIMEOUT_S", "10"))
    max_retries = int(read("MAX_RETRIES", "2"))
    retry_backoff_s = float(read("RETRY_BACKOFF_S", "1"))
    trigger_token = read("TRIGGER_TOKEN", "") or None

    if interval_s < 1:
        raise ValueError(f"{ENV_PREFIX}INTERVAL_S must be >= 1")
    if timeout_s <= 0:
        raise ValueError(f"{ENV_PREFIX}TIMEOUT_S must be > 0")
    if max_retries < 0:
        raise ValueError(f"{ENV_PREFIX}MAX_RETRIES must be >= 0")
    if retry_backoff_s < 0:
        raise ValueError(f"{ENV_PREFIX}RETRY_BACKOFF_S must be >= 0")

    return ExpirationWorkerSettings(
        api_base_url=api_base_url.rstrip("/"),
        interval_s=interval_s,
        timeout_s=timeout_s,
        trigger_token=trigger_token,
        max_retries=max_retries,
        retry_backoff_s=retry_backoff_s,
    )


def _decode_sweep_response(raw: str) -> tuple[bool, int, str | None]:
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        return False, 0, "Invalid JSON in sweep response"
    if not isinstance(body, dict):
        return False, 0, "Sweep response must be a JSON object"

    try:
        updated = int(body.get("updated", 0))
    except (TypeError, ValueError):
        return False, 0, "Invalid updated value in sweep response"
    if updated < 0:
        return False, 0, "updated must be >= 0 in sweep response"

    if body.get("ok") is not True:
        return False, updated, "Sweep reported a store failure"
    return True, updated, None


def run_sweep_once(
    settings: ExpirationWorkerSettings,
    opener: Callable[..., object] = urllib.request.urlopen,
) -> SweepRunResult:
    headers = {"Content-Type": "application/json"}
    if settings.trigger_token:
        headers["Authorization"] = f"Bearer {settings.trigger_token}"

    request = urllib.request.Request(
        url=f"{settings.api_base_url}{SWEEP_PATH}",
        data=b"",
        method="POST",
        headers=headers,
    )

    try:
        with opener(request, timeout=settings.timeout_s) as response:
            raw = response.read().decode("utf-8")
            valid, updated, error = _decode_sweep_response(raw)
            return SweepRunResult(
                ok=valid,
                updated=updated,
                status_code=getattr(response, "status", 200),
                error=error,
            )
    except urllib.error.HTTPError as exc:
        return SweepRunResult(
            ok=False,
            updated=0,
            status_code=exc.code,
            error=f"HTTPError: {exc.code}",
        )
    except urllib.error.URLError as exc:
        return SweepRunResult(ok=False, updated=0, error=f"URLError: {exc.reason}")


def _is_retryable(result: SweepRunResult) -> bool:
    if result.ok:
        return False
    # A store failure is reported with 200; the next tick retries it.
    if result.status_code is None:
        return True
    if result.status_code in {408, 429}:
        return True
    return result.status_code >= 500


def run_sweep_with_retries(
    settings: ExpirationWorkerSettings,
    opener: Callable[..., object] = urllib.request.urlopen,
    sleep: Callable[[float], None] = time.sleep,
) -> SweepRunResult:
    for attempts in range(1, settings.max_retries + 2):
        result = run_sweep_once(settings, opener=opener)
        if result.ok or not _is_retryable(result) or attempts > settings.max_retries:
            return SweepRunResult(
                ok=result.ok,
                updated=result.updated,
                status_code=result.status_code,
                error=result.error,
                attempts=attempts,
            )

        sleep(settings.retry_backoff_s * (2 ** (attempts - 1)))

    raise RuntimeError("sweep retry loop exhausted unexpectedly")


def run_forever(settings: ExpirationWorkerSettings) -> None:
    while True:
        result = run_sweep_with_retries(settings)
        if result.ok:
            logger.info("expiration sweep updated=%s attempts=%s", result.updated, result.attempts)
        else:
            logger.warning(
                "expiration sweep failed status=%s error=%s attempts=%s",
                result.status_code,
                result.error,
                result.attempts,
            )
        time.sleep(settings.interval_s)


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
    run_forever(load_settings())
