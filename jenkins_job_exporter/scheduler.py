""" The poll loop: fetch every job, publish, wait, repeat. """

import logging
import threading
import time

from jenkins_job_exporter.cycle import run_cycle

log = logging.getLogger(__name__)

IDLE = 'idle'
FETCHING = 'fetching'
PUBLISHING = 'publishing'


class Scheduler(object):
    """ Runs poll cycles forever and hands each snapshot to the expositor.

    The first cycle starts immediately.  A snapshot is only published once
    its whole cycle is done, and the next cycle only starts after the
    publish, so at most one of the two is ever in progress.  The wait
    between cycles is the full poll interval, however long the cycle took.
    """

    def __init__(self, config, expositor, fetch, clock=time.time):
        self.config = config
        self.expositor = expositor
        self.fetch = fetch
        self.clock = clock
        self.state = IDLE

    def poll(self):
        self.state = FETCHING
        snapshot = run_cycle(
            self.config.jobs,
            self.fetch,
            self.config.last_jobs,
            self.config.request_timeout_sec,
            clock=self.clock,
            max_workers=self.config.workers,
            verbose=self.config.verbose,
        )
        self.state = PUBLISHING
        self.expositor.publish(snapshot)
        self.state = IDLE
        log.info(
            "Poll cycle done: %d requests, %d failed",
            snapshot.requests_attempted, snapshot.requests_failed,
        )
        return snapshot

    def run(self, stop=None):
        """ Poll until ``stop`` is set.  Without one, poll forever. """
        if stop is None:
            stop = threading.Event()

        wait = 0
        while not stop.wait(wait):
            self.poll()
            wait = self.config.poll_interval_sec
        log.info("Poll loop stopped")
