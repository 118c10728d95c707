import pytest
import requests

from apothecary.services.errors import ExternalServiceError
from apothecary.services.janaushadhi import TOKEN_TTL_SECONDS, JanAushadhiClient


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, token_payload=None, products_payload=None, fail_products=False):
        self.token_payload = token_payload or {"responseCode": 200, "responseBody": "guest-token"}
        self.products_payload = products_payload or {"responseBody": {"productList": []}}
        self.fail_products = fail_products
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(("GET", url, None))
        return FakeResponse(self.token_payload)

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append(("POST", url, headers))
        if self.fail_products:
            raise requests.ConnectionError("boom")
        return FakeResponse(self.products_payload)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_token_is_cached_for_eight_hours():
    session, clock = FakeSession(), FakeClock()
    client = JanAushadhiClient(base_url="https://example.test/", session=session, clock=clock)

    client.get_products()
    client.get_products(search_text="para")
    clock.now += TOKEN_TTL_SECONDS + 1
    client.get_products()

    token_calls = [c for c in session.calls if c[0] == "GET"]
    assert len(token_calls) == 2
    assert token_calls[0][1] == "https://example.test/auth/generateGuestToken"
    assert session.calls[1][2] == {"Authorization": "Bearer guest-token"}


def test_rejected_token_raises():
    session = FakeSession(token_payload={"responseCode": 500, "responseBody": None})
    client = JanAushadhiClient(session=session)

    with pytest.raises(ExternalServiceError):
        client.get_products()


def test_network_failure_raises():
    client = JanAushadhiClient(session=FakeSession(fail_products=True))

    with pytest.raises(ExternalServiceError) as exc:
        client.get_products()
    assert exc.value.status_code == 502
