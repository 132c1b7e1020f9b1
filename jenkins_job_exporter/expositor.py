""" Exposition of the latest poll cycle to prometheus. """

from dataclasses import asdict, dataclass

import logging
import re

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

log = logging.getLogger(__name__)

GAUGE_HELP = {
    'total': 'Number of builds of {job} in the window, 0 if there were not enough builds',
    'success': 'Number of successful builds of {job} in the window',
    'failure': 'Number of failed builds of {job} in the window',
    'unstable': 'Number of unstable builds of {job} in the window',
    'reqtime_ms': 'Duration of the last jenkins API request for {job} in milliseconds, -1 if unknown',
}

COUNTERS = [
    ('poll_cycle_counter', 'Number of poll cycles done', 'cycles'),
    ('req_counter', 'Number of total Jenkins API requests done', 'requests'),
    ('req_err_counter', 'Number of Jenkins API requests that ended in error', 'errors'),
]

_invalid_chars = re.compile(r'[^a-zA-Z0-9_:]')


class InternalConsistencyError(Exception):
    """ Error raised when a snapshot does not cover exactly the configured jobs. """
    pass


class MetricNameCollision(ValueError):
    """ Error raised when two exported series would share a name. """
    pass


@dataclass(frozen=True)
class JobGauges:
    total: int = 0
    success: int = 0
    failure: int = 0
    unstable: int = 0
    reqtime_ms: int = 0


@dataclass(frozen=True)
class PollCounters:
    cycles: int = 0
    requests: int = 0
    errors: int = 0


def metric_name(job):
    """ Turn a job name into a valid prometheus metric name prefix. """
    name = _invalid_chars.sub('_', job)
    if not name or name[0].isdigit():
        name = '_' + name
    return name


def metric_names(jobs):
    """ Map each job to its metric name prefix.

    Raises ``MetricNameCollision`` when any gauge of a job would be exported
    under the same name as a gauge of another job or one of the counters
    (which prometheus_client exposes with a ``_total`` suffix).
    """
    owners = {}
    for name, _, _ in COUNTERS:
        owners[name] = owners[name + '_total'] = 'the counter ' + name

    names = {}
    for job in jobs:
        name = metric_name(job)
        for suffix in GAUGE_HELP:
            exported = '{}_{}'.format(name, suffix)
            owner = owners.setdefault(exported, job)
            if owner != job:
                raise MetricNameCollision(
                    "job %s would be exported as %s, which is already used by %s" % (job, exported, owner)
                )
        names[job] = name
    return names


class Expositor(object):
    """ Responsible for exposing metrics to prometheus.

    Holds one ``JobGauges`` per configured job.  The set of jobs is fixed
    when the expositor is created.  ``publish`` swaps in a whole new
    ``JobGauges`` per job, so a scrape sees every metric of a job from the
    same cycle, though different jobs may come from different cycles.
    """

    def __init__(self, jobs):
        self.names = metric_names(jobs)
        self.gauges = {job: JobGauges() for job in self.names}
        self.counters = PollCounters()

    def publish(self, snapshot):
        missing = sorted(set(self.gauges) - set(snapshot.jobs))
        unknown = sorted(set(snapshot.jobs) - set(self.gauges))
        if missing or unknown:
            raise InternalConsistencyError(
                "snapshot does not match configured jobs: missing %r, unknown %r" % (missing, unknown)
            )

        for job, result in snapshot.jobs.items():
            self.gauges[job] = JobGauges(
                total=result.metrics.total,
                success=result.metrics.success,
                failure=result.metrics.failure,
                unstable=result.metrics.unstable,
                reqtime_ms=result.reqtime_ms,
            )

        counters = self.counters
        self.counters = PollCounters(
            cycles=counters.cycles + 1,
            requests=counters.requests + snapshot.requests_attempted,
            errors=counters.errors + snapshot.requests_failed,
        )

    def collect(self):
        log.debug("Serving prometheus data")
        for job in sorted(self.gauges):
            name = self.names[job]
            gauges = self.gauges[job]
            for suffix, value in asdict(gauges).items():
                yield GaugeMetricFamily(
                    '{}_{}'.format(name, suffix), GAUGE_HELP[suffix].format(job=job), value=value
                )

        counters = self.counters
        for name, help_text, attr in COUNTERS:
            yield CounterMetricFamily(name, help_text, value=getattr(counters, attr))
