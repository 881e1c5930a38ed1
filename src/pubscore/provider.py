"""
Literature count providers.

A provider answers one question: how many publications mention a gene
together with each of a list of terms. The scoring pipeline only depends on
the ``lookup`` method, so anything with that signature can be plugged in.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, Sequence, Union, runtime_checkable

import polars as pl
import requests

from pubscore.data import load_counts_table, validate_counts_table
from pubscore.exceptions import ExternalLookupFailure

logger = logging.getLogger(__name__)

NCBI_BASE = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

# NCBI allows 3 requests/second without an API key and 10 with one
DEFAULT_DELAY_NO_KEY = 0.35
DEFAULT_DELAY_WITH_KEY = 0.12

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


@runtime_checkable
class LiteratureCountProvider(Protocol):
    """Anything that can count co-occurrences of a gene with a list of terms."""

    def lookup(self, gene: str, terms: Sequence[str]) -> Dict[str, int]:
        ...


class RateLimiter:
    """Thread-safe minimum spacing between consecutive calls.

    Each caller reserves the next free slot under the lock and sleeps outside
    it, so concurrent workers are spread ``min_interval`` seconds apart.
    """

    def __init__(self, min_interval: float):
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        self.min_interval = min_interval
        self.calls = 0
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def acquire(self) -> float:
        """Block until the caller may start a request.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
            self.calls += 1
        wait = slot - now
        if wait > 0:
            time.sleep(wait)
        return wait


class EntrezCountProvider:
    """Count PubMed records mentioning a gene and a term via NCBI E-utilities.

    One ``esearch`` request with ``rettype=count`` is made per (gene, term)
    pair. All requests made through the same provider share one rate limiter,
    so the provider can be used from several worker threads at once.
    """

    def __init__(
        self,
        email: Optional[str] = None,
        api_key: Optional[str] = None,
        tool: str = "pubscore",
        min_interval: Optional[float] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff: float = 1.0,
        field: str = "Title/Abstract",
        session: Optional[requests.Session] = None,
    ):
        self.email = email
        self.api_key = api_key
        self.tool = tool
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.field = field
        self.session = session if session is not None else requests.Session()

        if min_interval is None:
            min_interval = DEFAULT_DELAY_WITH_KEY if api_key else DEFAULT_DELAY_NO_KEY
        self.rate_limiter = RateLimiter(min_interval)

    def build_query(self, gene: str, term: str) -> str:
        """Build the PubMed query for one gene/term pair."""
        return f'"{gene}"[{self.field}] AND "{term}"[{self.field}]'

    def _params(self, query: str) -> Dict[str, str]:
        params = {
            "db": "pubmed",
            "term": query,
            "rettype": "count",
            "retmode": "json",
            "tool": self.tool,
        }
        if self.email:
            params["email"] = self.email
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def _request(self, gene: str, params: Dict[str, str]) -> requests.Response:
        """GET esearch with pacing and exponential backoff on transient errors."""
        url = f"{NCBI_BASE}/esearch.fcgi"
        last_error = "no attempt made"

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait = self.backoff * (2 ** (attempt - 1))
                logger.debug(f"Retrying {gene} in {wait:.1f}s (attempt {attempt + 1}): {last_error}")
                time.sleep(wait)

            self.rate_limiter.acquire()
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                last_error = str(e)
                continue

            if response.status_code in RETRY_STATUS_CODES:
                last_error = f"HTTP {response.status_code}"
                continue

            try:
                response.raise_for_status()
            except requests.HTTPError as e:
                raise ExternalLookupFailure(gene, str(e)) from e
            return response

        raise ExternalLookupFailure(gene, f"giving up after {self.max_retries + 1} attempts: {last_error}")

    def count(self, gene: str, term: str) -> int:
        """Number of PubMed records matching both the gene and the term."""
        query = self.build_query(gene, term)
        response = self._request(gene, self._params(query))

        try:
            result = response.json()["esearchresult"]
        except (ValueError, KeyError) as e:
            raise ExternalLookupFailure(gene, f"malformed esearch response: {e}") from e

        if "ERROR" in result:
            raise ExternalLookupFailure(gene, str(result["ERROR"]))
        try:
            hits = int(result["count"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalLookupFailure(gene, f"esearch response has no count: {e}") from e

        logger.debug(f"{query}: {hits} records")
        return hits

    def lookup(self, gene: str, terms: Sequence[str]) -> Dict[str, int]:
        return {term: self.count(gene, term) for term in terms}


class TableCountProvider:
    """Serve counts from a pre-computed long-form table.

    Useful offline and for re-running an analysis without hitting PubMed.
    Pairs missing from the table count as zero for genes the table knows;
    unknown genes fail like a failed remote lookup.
    """

    def __init__(self, table: pl.DataFrame):
        table = validate_counts_table(table)
        self._counts: Dict[str, Dict[str, int]] = {}
        for gene, term, hits in table.iter_rows():
            self._counts.setdefault(gene, {})[term] = hits

    @classmethod
    def from_file(cls, file_path: Union[str, Path]) -> "TableCountProvider":
        return cls(load_counts_table(file_path))

    @property
    def genes(self) -> Iterable[str]:
        return self._counts.keys()

    def lookup(self, gene: str, terms: Sequence[str]) -> Dict[str, int]:
        if gene not in self._counts:
            raise ExternalLookupFailure(gene, "gene not present in counts table")
        gene_counts = self._counts[gene]
        return {term: gene_counts.get(term, 0) for term in terms}
