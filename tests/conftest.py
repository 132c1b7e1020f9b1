import pytest
import requests

from jenkins_job_exporter.builds import BuildRecord, FetchError


def make_builds(results, start=1):
    return [
        BuildRecord(
            id=str(number),
            number=number,
            result=result,
            timestamp=1600000000000 + number * 60000,
            duration=30000,
        )
        for number, result in enumerate(results, start=start)
    ]


class FakeResponse:
    def __init__(self, payload=None, status_code=200, body_error=None):
        self.payload = payload
        self.status_code = status_code
        self.body_error = body_error

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("%d Server Error" % self.status_code, response=self)

    def json(self):
        if self.body_error is not None:
            raise self.body_error
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


class FakeFetch:
    """ Stands in for fetch_job_builds, serving canned histories per job. """

    def __init__(self, histories):
        self.histories = histories
        self.calls = []

    def __call__(self, job, window_size, timeout):
        self.calls.append((job, window_size, timeout))
        history = self.histories[job]
        if isinstance(history, Exception):
            raise history
        return history


@pytest.fixture
def builds():
    return make_builds


@pytest.fixture
def fake_fetch():
    return FakeFetch


@pytest.fixture
def fetch_error():
    return FetchError("connection refused")
