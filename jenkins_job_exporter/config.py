""" Command line and config file handling.

Every option can be given on the command line, with a default taken from
the environment.  When the only job given is the path of a readable file,
that file (JSON, or failing that YAML) replaces the whole configuration.
"""

from dataclasses import dataclass, field, fields

import argparse
import json
import logging
import os

import yaml

from jenkins_job_exporter import __version__
from jenkins_job_exporter.expositor import MetricNameCollision, metric_names

log = logging.getLogger(__name__)

DEFAULT_HOST = 'jenkins.fd.io'
DEFAULT_TIMEOUT = 30
DEFAULT_POLL_INTERVAL = 600
DEFAULT_BIND = '127.0.0.1:9186'
DEFAULT_LAST_JOBS = 10
DEFAULT_WORKERS = 1


class ConfigurationError(Exception):
    """ Error raised when the exporter cannot be configured from its inputs. """
    pass


@dataclass(frozen=True)
class Config:
    jobs: tuple = ()
    jenkins_host: str = DEFAULT_HOST
    request_timeout_sec: float = DEFAULT_TIMEOUT
    poll_interval_sec: float = DEFAULT_POLL_INTERVAL
    bind_to: str = DEFAULT_BIND
    last_jobs: int = DEFAULT_LAST_JOBS
    workers: int = DEFAULT_WORKERS
    verbose: int = 0
    source: str = field(default='command line', compare=False)

    @property
    def bind_address(self):
        return parse_bind(self.bind_to)


def parse_bind(value):
    """ Split ``host:port`` (or ``[v6addr]:port``) into ``(host, port)``. """
    host, sep, port = str(value).rpartition(':')
    if not sep or not host:
        raise ConfigurationError("bind address %r is not of the form host:port" % (value,))
    host = host.strip('[]')
    try:
        port = int(port)
    except ValueError:
        raise ConfigurationError("bind address %r has an invalid port" % (value,)) from None
    if not 0 <= port <= 65535:
        raise ConfigurationError("bind address %r has an out of range port" % (value,))
    return host, port


def _env(name, default, convert=str):
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return convert(value)
    except ValueError:
        raise ConfigurationError("environment variable %s=%r is invalid" % (name, value)) from None


def build_parser():
    parser = argparse.ArgumentParser(
        prog='jenkins-job-exporter',
        description='Periodically poll jenkins jobs and export their recent build results for prometheus.',
    )
    parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)
    parser.add_argument(
        '-j', '--jenkins-host', default=_env('JENKINS_HOST', DEFAULT_HOST),
        help='Jenkins hostname to monitor the jobs on',
    )
    parser.add_argument(
        '-t', '--request-timeout-sec', type=float,
        default=_env('JENKINS_REQUEST_TIMEOUT', DEFAULT_TIMEOUT, float),
        help='Timeout of a single jenkins API request',
    )
    parser.add_argument(
        '-p', '--poll-interval-sec', type=float,
        default=_env('JENKINS_POLL_INTERVAL', DEFAULT_POLL_INTERVAL, float),
        help='Poll interval - how long to wait between polls of the job builds status',
    )
    parser.add_argument(
        '-b', '--bind-to', default=_env('EXPORTER_BIND', DEFAULT_BIND),
        help='Bind the prometheus exporter to this address',
    )
    parser.add_argument(
        '-l', '--last-jobs', type=int, default=_env('JENKINS_LAST_JOBS', DEFAULT_LAST_JOBS, int),
        help='How many "last" builds of each job to look at',
    )
    parser.add_argument(
        '-w', '--workers', type=int, default=_env('JENKINS_FETCH_WORKERS', DEFAULT_WORKERS, int),
        help='How many jobs to fetch in parallel',
    )
    parser.add_argument(
        '-v', '--verbose', action='count', default=0,
        help='A level of verbosity, and can be used multiple times',
    )
    parser.add_argument(
        'jobs', nargs='+',
        help='Jenkins jobs to monitor, or a single JSON/YAML file holding the whole configuration',
    )
    return parser


def parse_document(text, path):
    """ Parse a config file, trying JSON first and then YAML. """
    try:
        return json.loads(text)
    except ValueError as json_error:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as yaml_error:
            raise ConfigurationError(
                "%s is neither valid JSON (%s) nor valid YAML (%s)" % (path, json_error, yaml_error)
            ) from yaml_error


def load_config_file(path):
    try:
        with open(path, encoding='utf-8') as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError("could not read %s: %s" % (path, e)) from e

    data = parse_document(text, path)
    if not isinstance(data, dict):
        raise ConfigurationError("%s must hold a mapping of options" % path)

    known = {f.name for f in fields(Config)} - {'source'}
    unknown = sorted(map(str, set(data) - known))
    if unknown:
        raise ConfigurationError("%s has unknown options: %s" % (path, ', '.join(unknown)))
    if 'jobs' not in data:
        raise ConfigurationError("%s does not list any jobs" % path)

    jobs = data['jobs']
    if isinstance(jobs, str) or not isinstance(jobs, list):
        raise ConfigurationError("jobs in %s must be a list" % path)

    return validate(Config(**dict(data, jobs=tuple(jobs), source=path)))


def is_config_file(jobs):
    return len(jobs) == 1 and os.path.isfile(jobs[0]) and os.access(jobs[0], os.R_OK)


def validate(config):
    """ Check a ``Config`` and normalize its job list. """
    try:
        if not config.jobs:
            raise ConfigurationError("no jobs to monitor")
        for job in config.jobs:
            if not isinstance(job, str) or not job.strip('/'):
                raise ConfigurationError("invalid job name %r" % (job,))
        if not isinstance(config.jenkins_host, str) or not config.jenkins_host:
            raise ConfigurationError("invalid jenkins host %r" % (config.jenkins_host,))
        if not float(config.request_timeout_sec) > 0:
            raise ConfigurationError("request timeout must be positive")
        if not float(config.poll_interval_sec) > 0:
            raise ConfigurationError("poll interval must be positive")
        if int(config.last_jobs) < 1 or int(config.last_jobs) != config.last_jobs:
            raise ConfigurationError("last jobs must be a positive integer")
        if int(config.workers) < 1 or int(config.workers) != config.workers:
            raise ConfigurationError("workers must be a positive integer")
        if int(config.verbose) < 0:
            raise ConfigurationError("verbose must not be negative")
    except (TypeError, ValueError, OverflowError) as e:
        raise ConfigurationError("invalid configuration from %s: %s" % (config.source, e)) from e
    parse_bind(config.bind_to)

    # Duplicates would be polled and published twice per cycle.
    jobs = tuple(dict.fromkeys(config.jobs))
    try:
        metric_names(jobs)
    except MetricNameCollision as e:
        raise ConfigurationError(str(e)) from e

    return Config(
        jobs=jobs,
        jenkins_host=config.jenkins_host,
        request_timeout_sec=float(config.request_timeout_sec),
        poll_interval_sec=float(config.poll_interval_sec),
        bind_to=str(config.bind_to),
        last_jobs=int(config.last_jobs),
        workers=int(config.workers),
        verbose=int(config.verbose),
        source=config.source,
    )


def load_config(argv=None):
    """ Build the configuration from the command line, or the file it names. """
    args = build_parser().parse_args(argv)
    if is_config_file(args.jobs):
        log.info("Loading configuration from %s", args.jobs[0])
        return load_config_file(args.jobs[0])

    return validate(Config(
        jobs=tuple(args.jobs),
        jenkins_host=args.jenkins_host,
        request_timeout_sec=args.request_timeout_sec,
        poll_interval_sec=args.poll_interval_sec,
        bind_to=args.bind_to,
        last_jobs=args.last_jobs,
        workers=args.workers,
        verbose=args.verbose,
    ))
