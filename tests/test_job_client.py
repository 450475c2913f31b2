import pytest
import requests

from rcpt_core.errors import DriverError, OperationTimeout
from rcpt_core.job_client import AutomationJobClient, resolve_token


SECTION = {
    "endpoint": "https://automation.example/accounts/acct/",
    "runbook": "ReallocateInvoices",
    "parameter_name": "InvoiceIds",
    "token_env": "RCPT_TEST_TOKEN",
}


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self._payload = payload
        self.status_code = status
        self.text = "" if payload is None else str(payload)
        self.content = b"" if payload is None else b"x"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


@pytest.fixture(autouse=True)
def token(monkeypatch):
    monkeypatch.setenv("RCPT_TEST_TOKEN", "secret")


def test_start_and_refresh():
    sess = FakeSession([
        FakeResponse({"properties": {"status": "New"}}),
        FakeResponse({"properties": {"status": "Completed"}}),
    ])
    client = AutomationJobClient(SECTION, session=sess)
    client.start("500,600")
    assert client.read_status() == "New"
    client.refresh()
    assert client.read_status() == "Completed"

    method, url, kwargs = sess.requests[0]
    assert method == "PUT"
    assert url == f"https://automation.example/accounts/acct/jobs/{client.job_name}"
    assert kwargs["json"]["properties"]["parameters"] == {"InvoiceIds": "500,600"}
    assert kwargs["json"]["properties"]["runbook"] == {"name": "ReallocateInvoices"}
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["params"] == {"api-version": "2019-06-01"}
    assert sess.requests[1][0] == "GET"


def test_open_job_surface_hits_runbook():
    sess = FakeSession([FakeResponse({})])
    AutomationJobClient(SECTION, session=sess).open_job_surface(30)
    method, url, kwargs = sess.requests[0]
    assert (method, url) == ("GET", "https://automation.example/accounts/acct/runbooks/ReallocateInvoices")
    assert kwargs["timeout"] == 30


def test_http_error_becomes_driver_error():
    sess = FakeSession([FakeResponse({"error": "nope"}, status=403)])
    client = AutomationJobClient(SECTION, session=sess)
    with pytest.raises(DriverError, match="HTTP 403"):
        client.start("1")


def test_request_timeout():
    sess = FakeSession([requests.Timeout("slow")])
    with pytest.raises(OperationTimeout):
        AutomationJobClient(SECTION, session=sess).open_job_surface(5)


def test_refresh_before_start():
    with pytest.raises(DriverError):
        AutomationJobClient(SECTION, session=FakeSession([])).refresh()


def test_missing_endpoint():
    with pytest.raises(DriverError):
        AutomationJobClient({"runbook": "x"}, session=FakeSession([]))


def test_missing_token(monkeypatch):
    monkeypatch.delenv("RCPT_TEST_TOKEN")
    assert resolve_token(SECTION) == ""
    client = AutomationJobClient(SECTION, session=FakeSession([FakeResponse({})]))
    with pytest.raises(DriverError, match="token"):
        client.open_job_surface(5)
