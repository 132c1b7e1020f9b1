""" One poll cycle: fetch and reduce every configured job into a snapshot. """

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

import logging
import time

from jenkins_job_exporter.builds import FetchError, WindowMetrics, window_metrics

log = logging.getLogger(__name__)

# Request time reported when the clock could not be read.
REQTIME_UNKNOWN = -1


class ClockError(Exception):
    """ Error raised when the wall clock cannot be used to time a request. """
    pass


@dataclass(frozen=True)
class JobResult:
    metrics: WindowMetrics
    reqtime_ms: int


@dataclass(frozen=True)
class CycleSnapshot:
    jobs: Mapping[str, JobResult] = field(default_factory=dict)
    requests_attempted: int = 0
    requests_failed: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'jobs', MappingProxyType(dict(self.jobs)))


def elapsed_ms(start, clock):
    try:
        end = clock()
    except (OSError, OverflowError, ValueError) as e:
        raise ClockError("could not read clock: %s" % e) from e
    if start is None:
        raise ClockError("start of request was not recorded")
    elapsed = end - start
    if elapsed < 0:
        raise ClockError("clock went backwards by %.3fs" % -elapsed)
    return int(elapsed * 1000)


def read_clock(clock):
    try:
        return clock()
    except (OSError, OverflowError, ValueError) as e:
        log.warning("Could not read clock: %s", e)
        return None


def poll_job(job, fetch, window_size, timeout, clock=time.time, verbose=0):
    """ Fetch and reduce a single job.

    Returns ``(JobResult, failed)``.  Neither a fetch nor a clock failure
    escapes from here.
    """
    start = read_clock(clock)
    failed = False
    try:
        history = fetch(job, window_size, timeout)
    except FetchError as e:
        log.warning("%s: %s", job, e)
        history = None
        failed = True

    try:
        reqtime_ms = elapsed_ms(start, clock)
    except ClockError as e:
        log.warning("%s: request time unknown: %s", job, e)
        reqtime_ms = REQTIME_UNKNOWN

    if failed:
        metrics = WindowMetrics()
    else:
        if verbose >= 2:
            log.debug("%s: raw builds %r", job, history)
        metrics = window_metrics(history, window_size)
        if verbose >= 1:
            log.debug("%s: window %r", job, history[-window_size:] if metrics.total else [])

    log.info(
        "%s: ok %d/ nok %d/ unstable %d/ total %d (%d ms)",
        job, metrics.success, metrics.failure, metrics.unstable, metrics.total, reqtime_ms,
    )
    return JobResult(metrics=metrics, reqtime_ms=reqtime_ms), failed


def run_cycle(jobs, fetch, window_size, timeout, clock=time.time, max_workers=1, verbose=0):
    """ Poll every job once and gather the results into a ``CycleSnapshot``.

    ``fetch`` is called as ``fetch(job, window_size, timeout)`` and must
    return the job's builds oldest first or raise ``FetchError``.  With
    ``max_workers`` above one, jobs are fetched in parallel; the snapshot
    is the same either way.
    """
    def poll(job):
        return poll_job(job, fetch, window_size, timeout, clock=clock, verbose=verbose)

    if max_workers and max_workers > 1 and len(jobs) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            outcomes = list(ex.map(poll, jobs))
    else:
        outcomes = [poll(job) for job in jobs]

    results = {}
    failed = 0
    for job, (result, job_failed) in zip(jobs, outcomes):
        results[job] = result
        failed += int(job_failed)

    return CycleSnapshot(
        jobs=results,
        requests_attempted=len(outcomes),
        requests_failed=failed,
    )
