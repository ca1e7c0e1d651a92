# Overview: Service-layer concurrency helpers; retry wrapper around units of work.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_stale: bool = True):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (database locked, deadlocks). StaleDataError
    (another writer bumped the version first) is retried only when
    retry_stale is True, i.e. for unconditional internal writes.
    Client-driven writes pass retry_stale=False and report the conflict.

    func must be a complete unit (load, mutate, commit) so a retry re-reads.
    """
    retry_on = (OperationalError, StaleDataError) if retry_stale else (OperationalError,)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
