""" Retrieval and reduction of jenkins build history.

``fetch_job_builds`` does one request against jenkins for one job, and
``window_metrics`` reduces what came back to counts over the last N builds.
"""

from dataclasses import dataclass

import logging
import os

import requests

from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

log = logging.getLogger(__name__)

# A failed fetch is retried by the next poll cycle, never within one.
retry_strategy = Retry(
    connect=0,
    read=0,
    status=0,
    other=0,
    redirect=5,
    raise_on_status=False,
)
adapter = HTTPAdapter(max_retries=retry_strategy)
session = requests.Session()
session.mount("https://", adapter)
session.mount("http://", adapter)

BUILD_FIELDS = ['number', 'status', 'timestamp', 'id', 'result', 'duration']

SUCCESS = 'SUCCESS'
FAILURE = 'FAILURE'
UNSTABLE = 'UNSTABLE'

OUTCOMES = [
    SUCCESS,
    FAILURE,
    UNSTABLE,
]


class FetchError(Exception):
    """ Error raised when the build history of a job could not be retrieved. """
    pass


@dataclass(frozen=True)
class BuildRecord:
    id: str
    number: int
    result: str | None
    timestamp: int
    duration: int


@dataclass(frozen=True)
class WindowMetrics:
    total: int = 0
    success: int = 0
    failure: int = 0
    unstable: int = 0


def jenkins_auth():
    """ Basic auth credentials from the environment, if both are set. """
    if 'JENKINS_USERNAME' in os.environ and 'JENKINS_TOKEN' in os.environ:
        return (os.environ['JENKINS_USERNAME'], os.environ['JENKINS_TOKEN'])
    return None


def job_url(host, job, scheme='https'):
    """ Build the json api url of a job.

    Jobs nested in folders are given as ``folder/name`` and live under
    ``/job/folder/job/name`` on the server.
    """
    path = ''.join('/job/' + part for part in job.strip('/').split('/'))
    return '{}://{}{}/api/json'.format(scheme, host, path)


def build_tree(window_size):
    tree = 'builds[{}]'.format(','.join(BUILD_FIELDS))
    if window_size and window_size > 0:
        tree += '{{0,{}}}'.format(window_size)
    return tree


def parse_build(build):
    try:
        result = build['result']
        if result is not None and not isinstance(result, str):
            raise TypeError("result must be a string or null, not %r" % (result,))
        return BuildRecord(
            id=str(build['id']),
            number=int(build['number']),
            result=result,
            timestamp=int(build['timestamp']),
            duration=int(build['duration']),
        )
    except (KeyError, TypeError, ValueError, OverflowError) as e:
        raise FetchError("malformed build entry %r: %s" % (build, e)) from e


def fetch_job_builds(host, job, window_size, timeout, session=session, auth=None, scheme='https'):
    """ Retrieve the recent builds of one job, oldest first.

    Makes exactly one request.  Any failure along the way, from the
    connection through to a malformed build entry, raises ``FetchError``.
    """
    url = job_url(host, job, scheme=scheme)
    params = dict(tree=build_tree(window_size))
    try:
        response = session.get(url, params=params, auth=auth, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except requests.RequestException as e:
        raise FetchError("fetching %s failed: %s" % (url, e)) from e
    except ValueError as e:
        raise FetchError("undecodable response from %s: %s" % (url, e)) from e

    if not isinstance(data, dict) or not isinstance(data.get('builds'), list):
        raise FetchError("response from %s has no builds list" % url)

    return [parse_build(build) for build in data['builds']]


def window_metrics(history, window_size, outcomes=OUTCOMES):
    """ Reduce the last ``window_size`` builds of a history to counts.

    Returns all zeroes when the history is too short to fill the window.
    Builds without a result, or with one outside ``outcomes``, only count
    towards the total.
    """
    if window_size < 1 or len(history) < window_size:
        return WindowMetrics()

    window = history[-window_size:]
    counts = dict.fromkeys(outcomes, 0)
    for build in window:
        if build.result in counts:
            counts[build.result] += 1

    return WindowMetrics(
        total=len(window),
        success=counts.get(SUCCESS, 0),
        failure=counts.get(FAILURE, 0),
        unstable=counts.get(UNSTABLE, 0),
    )
