""" Entry point: configure, start the prometheus server and poll forever. """

import functools
import logging
import signal
import sys
import threading

from prometheus_client import CollectorRegistry, start_http_server

from jenkins_job_exporter.builds import fetch_job_builds, jenkins_auth
from jenkins_job_exporter.config import ConfigurationError, load_config
from jenkins_job_exporter.expositor import Expositor, InternalConsistencyError
from jenkins_job_exporter.scheduler import Scheduler

log = logging.getLogger('jenkins_job_exporter')


def install_signal_handlers(stop):
    def _handle(signum, frame=None):
        log.info("Received signal %d, stopping", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s - %(message)s',
    )
    try:
        config = load_config(argv)
    except ConfigurationError as e:
        log.error("Invalid configuration: %s", e)
        return 2

    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    expositor = Expositor(config.jobs)
    registry = CollectorRegistry()
    registry.register(expositor)

    fetch = functools.partial(fetch_job_builds, config.jenkins_host, auth=jenkins_auth())
    scheduler = Scheduler(config, expositor, fetch)

    addr, port = config.bind_address
    start_http_server(port, addr=addr, registry=registry)
    log.info(
        "Started Prometheus exporter on %s, monitoring %d jobs on %s with %s seconds poll interval",
        config.bind_to, len(config.jobs), config.jenkins_host, config.poll_interval_sec,
    )

    stop = threading.Event()
    install_signal_handlers(stop)
    try:
        scheduler.run(stop)
    except InternalConsistencyError as e:
        log.critical("Published metrics are out of sync with the configured jobs: %s", e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
