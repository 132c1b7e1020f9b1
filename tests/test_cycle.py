import functools
import json

import pytest

from jenkins_job_exporter.builds import FetchError, WindowMetrics, fetch_job_builds
from jenkins_job_exporter.cycle import REQTIME_UNKNOWN, CycleSnapshot, JobResult, run_cycle

from conftest import FakeFetch, FakeResponse, FakeSession


def ticking_clock(*readings):
    return iter(readings).__next__


def test_failed_job_does_not_affect_others(builds, fake_fetch):
    fetch = fake_fetch({
        'alpha': FetchError("503 Service Unavailable"),
        'beta': builds(['SUCCESS'] * 10),
    })

    snapshot = run_cycle(['alpha', 'beta'], fetch, 10, 30)

    assert snapshot.jobs['alpha'].metrics == WindowMetrics()
    assert snapshot.jobs['beta'].metrics == WindowMetrics(total=10, success=10)
    assert snapshot.requests_attempted == 2
    assert snapshot.requests_failed == 1


def test_every_job_fails(fake_fetch, fetch_error):
    jobs = ['a', 'b', 'c']
    fetch = fake_fetch(dict.fromkeys(jobs, fetch_error))

    snapshot = run_cycle(jobs, fetch, 10, 30)

    assert set(snapshot.jobs) == set(jobs)
    assert all(result.metrics == WindowMetrics() for result in snapshot.jobs.values())
    assert snapshot.requests_attempted == 3
    assert snapshot.requests_failed == 3


def test_jobs_fetched_in_order_with_window_and_timeout(builds, fake_fetch):
    fetch = fake_fetch({'b': builds([]), 'a': builds(['SUCCESS'])})

    snapshot = run_cycle(['b', 'a'], fetch, 3, 12.5)

    assert fetch.calls == [('b', 3, 12.5), ('a', 3, 12.5)]
    assert list(snapshot.jobs) == ['b', 'a']
    assert snapshot.requests_failed == 0


def test_request_time(builds, fake_fetch):
    fetch = fake_fetch({'a': builds(['SUCCESS']), 'b': builds(['FAILURE'])})

    snapshot = run_cycle(['a', 'b'], fetch, 1, 30, clock=ticking_clock(100.0, 100.25, 101.0, 103.0))

    assert snapshot.jobs['a'].reqtime_ms == 250
    assert snapshot.jobs['b'].reqtime_ms == 2000


def test_clock_going_backwards(builds, fake_fetch):
    fetch = fake_fetch({'a': builds(['SUCCESS'])})

    snapshot = run_cycle(['a'], fetch, 1, 30, clock=ticking_clock(100.0, 99.0))

    assert snapshot.jobs['a'] == JobResult(metrics=WindowMetrics(total=1, success=1), reqtime_ms=REQTIME_UNKNOWN)


def test_clock_unreadable(builds, fake_fetch):
    def broken_clock():
        raise OSError("clock_gettime failed")

    fetch = fake_fetch({'a': builds(['FAILURE']), 'b': FetchError("timed out")})

    snapshot = run_cycle(['a', 'b'], fetch, 1, 30, clock=broken_clock)

    assert snapshot.jobs['a'].reqtime_ms == REQTIME_UNKNOWN
    assert snapshot.jobs['a'].metrics == WindowMetrics(total=1, failure=1)
    assert snapshot.jobs['b'].reqtime_ms == REQTIME_UNKNOWN
    assert snapshot.requests_failed == 1


def test_parallel_cycle_matches_sequential(builds, fake_fetch):
    histories = {
        'job-%d' % i: builds(['SUCCESS', 'FAILURE', 'UNSTABLE'][i % 3:] * 4)
        for i in range(8)
    }
    histories['job-3'] = FetchError("reset by peer")

    sequential = run_cycle(list(histories), fake_fetch(histories), 5, 30, clock=lambda: 0.0)
    parallel = run_cycle(list(histories), fake_fetch(histories), 5, 30, clock=lambda: 0.0, max_workers=4)

    assert parallel == sequential
    assert list(parallel.jobs) == list(histories)


def test_snapshot_is_immutable(builds, fake_fetch):
    snapshot = run_cycle(['a'], fake_fetch({'a': builds([])}), 1, 30)

    with pytest.raises(TypeError):
        snapshot.jobs['b'] = snapshot.jobs['a']
    with pytest.raises(AttributeError):
        snapshot.requests_failed = 3


def test_snapshot_copies_its_jobs():
    jobs = {'a': JobResult(metrics=WindowMetrics(), reqtime_ms=1)}
    snapshot = CycleSnapshot(jobs=jobs, requests_attempted=1)

    jobs['b'] = jobs['a']

    assert list(snapshot.jobs) == ['a']


def test_malformed_response_counts_as_failed_fetch(builds):
    payload = json.loads(
        '{"builds": [{"id": "1", "number": Infinity, "result": "SUCCESS", "timestamp": 0, "duration": 0}]}'
    )
    broken = functools.partial(fetch_job_builds, 'jenkins.fd.io', session=FakeSession(FakeResponse(payload)))
    healthy = FakeFetch({'beta': builds(['SUCCESS'])})

    def fetch(job, window_size, timeout):
        if job == 'alpha':
            return broken(job, window_size, timeout)
        return healthy(job, window_size, timeout)

    snapshot = run_cycle(['alpha', 'beta'], fetch, 1, 30)

    assert snapshot.jobs['alpha'].metrics == WindowMetrics()
    assert snapshot.jobs['beta'].metrics == WindowMetrics(total=1, success=1)
    assert snapshot.requests_failed == 1
