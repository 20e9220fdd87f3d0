"""Helpers for building token records in tests."""

import time


def far_future_millis() -> int:
    """Expiry timestamp one hour from now, in epoch milliseconds."""
    return int((time.time() + 3600) * 1000)


def past_millis() -> int:
    """Expiry timestamp one hour ago, in epoch milliseconds."""
    return int((time.time() - 3600) * 1000)


def make_record(access="access-token", refresh="refresh-token", expiry=None, **extra) -> dict:
    record = {"access_token": access, "expiry_date": expiry or far_future_millis()}
    if refresh:
        record["refresh_token"] = refresh
    record.update(extra)
    return record
