import itertools
import json

import pytest
import requests

from webauth.errors import AccountLookupFailed, AccountNotFound
from webauth.ledger import HorizonLedger, parse_account
from webauth.signers import SignerKind

ADDRESS = "GACCOUNT"


class FakeResponse:
    def __init__(self, status_code=200, body=None, bad_json=False, chunks=None, exc=None):
        self.status_code = status_code
        if chunks is None:
            chunks = [b"{not json" if bad_json else json.dumps(body).encode()]
        self._chunks = chunks
        self._exc = exc
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk
        if self._exc is not None:
            raise self._exc

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, timeout=None, headers=None, stream=False):
        self.calls.append((url, timeout))
        if self.exc is not None:
            raise self.exc
        return self.response

    def close(self):
        pass


ACCOUNT_BODY = {
    "id": ADDRESS,
    "signers": [
        {"key": "GA", "weight": 1, "type": "ed25519_public_key"},
        {"key": "TB", "weight": 5, "type": "preauth_tx"},
        {"key": "ZZ", "weight": 9, "type": "ed25519_signed_payload"},
    ],
    "thresholds": {"low_threshold": 1, "med_threshold": 2, "high_threshold": 3},
}


def test_parse_account():
    acct = parse_account(ADDRESS, ACCOUNT_BODY)
    assert acct.address == ADDRESS
    assert [(s.key, s.weight, s.kind) for s in acct.signers] == [
        ("GA", 1, SignerKind.ED25519),
        ("TB", 5, SignerKind.PRE_AUTH_TX),
    ]
    assert (acct.thresholds.low, acct.thresholds.medium, acct.thresholds.high) == (1, 2, 3)


def test_load_account_uses_timeout():
    session = FakeSession(FakeResponse(200, ACCOUNT_BODY))
    ledger = HorizonLedger("https://horizon.example/", timeout=3.5, session=session)

    acct = ledger.load_account(ADDRESS)
    assert acct.thresholds.medium == 2
    assert session.calls == [(f"https://horizon.example/accounts/{ADDRESS}", 3.5)]


def test_not_found():
    ledger = HorizonLedger("https://horizon.example", session=FakeSession(FakeResponse(404, {})))
    with pytest.raises(AccountNotFound):
        ledger.load_account(ADDRESS)


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(exc=requests.Timeout("slow")),
        FakeSession(exc=requests.ConnectionError("down")),
        FakeSession(FakeResponse(500, {})),
        FakeSession(FakeResponse(200, bad_json=True)),
        FakeSession(FakeResponse(200, ["not", "an", "object"])),
        FakeSession(FakeResponse(200, {"signers": [{"key": "GA"}]})),
    ],
)
def test_lookup_failures(session):
    ledger = HorizonLedger("https://horizon.example", session=session)
    with pytest.raises(AccountLookupFailed) as ei:
        ledger.load_account(ADDRESS)
    assert ei.value.status_code == 503


def test_stream_errors_are_lookup_failures():
    response = FakeResponse(200, chunks=[b'{"signers"'], exc=requests.ConnectionError("read timed out"))
    ledger = HorizonLedger("https://horizon.example", session=FakeSession(response))
    with pytest.raises(AccountLookupFailed):
        ledger.load_account(ADDRESS)
    assert response.closed


def test_slow_body_hits_overall_deadline(monkeypatch):
    clock = itertools.count(0, 2.0)
    monkeypatch.setattr("webauth.ledger.monotonic", lambda: next(clock))
    body = json.dumps(ACCOUNT_BODY).encode()
    response = FakeResponse(200, chunks=[body[:10], body[10:20], body[20:]])
    ledger = HorizonLedger("https://horizon.example", timeout=3.0, session=FakeSession(response))

    with pytest.raises(AccountLookupFailed) as ei:
        ledger.load_account(ADDRESS)
    assert "timed out" in ei.value.message
    assert response.closed


def test_oversized_body_rejected(monkeypatch):
    monkeypatch.setattr("webauth.ledger.MAX_BODY_BYTES", 16)
    response = FakeResponse(200, ACCOUNT_BODY)
    ledger = HorizonLedger("https://horizon.example", session=FakeSession(response))
    with pytest.raises(AccountLookupFailed):
        ledger.load_account(ADDRESS)
