"""Tests for literature count providers."""

import threading
import time
from unittest.mock import MagicMock

import polars as pl
import pytest
import requests

from pubscore.exceptions import ExternalLookupFailure
from pubscore.provider import (
    DEFAULT_DELAY_NO_KEY,
    DEFAULT_DELAY_WITH_KEY,
    EntrezCountProvider,
    LiteratureCountProvider,
    RateLimiter,
    TableCountProvider,
)


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status_code}")
    else:
        response.raise_for_status.return_value = None
    return response


def _count_response(count):
    return _response(payload={"esearchresult": {"count": str(count)}})


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def provider(session):
    return EntrezCountProvider(email="test@example.org", min_interval=0, backoff=0, session=session)


def test_rate_limiter_spacing():
    """Test calls from several threads are spread out."""
    limiter = RateLimiter(min_interval=0.05)
    start = time.monotonic()

    threads = [threading.Thread(target=limiter.acquire) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert limiter.calls == 4
    assert time.monotonic() - start >= 0.14


def test_rate_limiter_invalid():
    with pytest.raises(ValueError):
        RateLimiter(min_interval=-1)


def test_default_intervals(session):
    """Test the pacing follows the API key."""
    assert EntrezCountProvider(session=session).rate_limiter.min_interval == DEFAULT_DELAY_NO_KEY
    keyed = EntrezCountProvider(api_key="abc", session=session)
    assert keyed.rate_limiter.min_interval == DEFAULT_DELAY_WITH_KEY


def test_entrez_lookup(provider, session):
    """Test one esearch count request per term."""
    session.get.side_effect = [_count_response(12), _count_response(0)]

    counts = provider.lookup("CD4", ["immunity", "T cell"])

    assert counts == {"immunity": 12, "T cell": 0}
    assert session.get.call_count == 2
    params = session.get.call_args_list[0].kwargs["params"]
    assert params["db"] == "pubmed"
    assert params["rettype"] == "count"
    assert params["email"] == "test@example.org"
    assert "api_key" not in params
    assert params["term"] == '"CD4"[Title/Abstract] AND "immunity"[Title/Abstract]'
    assert session.get.call_args_list[0].kwargs["timeout"] == provider.timeout


def test_entrez_retries_transient_errors(provider, session):
    """Test 429 and connection errors are retried."""
    session.get.side_effect = [
        _response(429),
        requests.ConnectionError("reset"),
        _count_response(7),
    ]

    assert provider.count("TP53", "cancer") == 7
    assert session.get.call_count == 3


def test_entrez_gives_up(session):
    """Test a lookup fails after the retries are used up."""
    provider = EntrezCountProvider(min_interval=0, backoff=0, max_retries=2, session=session)
    session.get.return_value = _response(503)

    with pytest.raises(ExternalLookupFailure, match="3 attempts"):
        provider.count("TP53", "cancer")
    assert session.get.call_count == 3


def test_entrez_client_error_not_retried(provider, session):
    """Test a 400 fails straight away."""
    session.get.return_value = _response(400)

    with pytest.raises(ExternalLookupFailure, match="HTTP 400"):
        provider.count("TP53", "cancer")
    assert session.get.call_count == 1


def test_entrez_error_payloads(provider, session):
    """Test malformed and error responses raise lookup failures."""
    session.get.return_value = _response(payload={"esearchresult": {"ERROR": "Invalid query"}})
    with pytest.raises(ExternalLookupFailure, match="Invalid query"):
        provider.count("TP53", "cancer")

    session.get.return_value = _response(payload={"unexpected": {}})
    with pytest.raises(ExternalLookupFailure, match="malformed"):
        provider.count("TP53", "cancer")


def test_table_provider():
    """Test serving counts from a table."""
    table = pl.DataFrame({
        'gene': ['CD4', 'CD4', 'TP53'],
        'term': ['immunity', 'cancer', 'cancer'],
        'count': [120, 30, 5000]
    })
    provider = TableCountProvider(table)

    assert isinstance(provider, LiteratureCountProvider)
    assert set(provider.genes) == {'CD4', 'TP53'}
    assert provider.lookup('CD4', ['immunity', 'cancer']) == {'immunity': 120, 'cancer': 30}
    assert provider.lookup('TP53', ['immunity']) == {'immunity': 0}
    with pytest.raises(ExternalLookupFailure):
        provider.lookup('MYC', ['cancer'])


def test_table_provider_from_file(tmp_path):
    path = tmp_path / "counts.tsv"
    path.write_text("gene\tterm\tcount\nCD4\timmunity\t3\n")

    provider = TableCountProvider.from_file(path)
    assert provider.lookup('CD4', ['immunity']) == {'immunity': 3}
