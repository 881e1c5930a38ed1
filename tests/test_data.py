"""Tests for gene handling and counts table construction."""

import threading

import polars as pl
import pytest

from pubscore.data import (
    AMBIGUOUS_GENES,
    LookupReport,
    build_counts_table,
    filter_ambiguous,
    load_counts_table,
    load_gene_list,
    normalise_symbols,
    validate_counts_table,
)
from pubscore.exceptions import EmptyInputError, ExternalLookupFailure


class FakeProvider:
    """Counts are the length of gene + term; selected genes fail."""

    def __init__(self, failing=(), partial=(), negative=()):
        self.failing = set(failing)
        self.partial = set(partial)
        self.negative = set(negative)
        self.calls = []
        self._lock = threading.Lock()

    def lookup(self, gene, terms):
        with self._lock:
            self.calls.append(gene)
        if gene in self.failing:
            raise ExternalLookupFailure(gene, "HTTP 500")
        if gene in self.negative:
            return {term: -1 for term in terms}
        if gene in self.partial:
            return {terms[0]: 1}
        return {term: len(gene) + len(term) for term in terms}


class CancellingProvider(FakeProvider):
    """Sets the cancel event on its first lookup."""

    def __init__(self, cancel_event):
        super().__init__()
        self.cancel_event = cancel_event

    def lookup(self, gene, terms):
        self.cancel_event.set()
        return super().lookup(gene, terms)


@pytest.fixture
def gene_file(tmp_path):
    """Plain gene list, one symbol per line."""
    path = tmp_path / "genes.txt"
    path.write_text("TP53\nBRCA1\n\nEGFR\nTP53\n")
    return path


@pytest.fixture
def gene_table_file(tmp_path):
    """Tab-delimited gene table with a gene_id column."""
    path = tmp_path / "genes.tsv"
    path.write_text("gene_id\tscore\nCD4\t1.0\nCD8A\t0.5\nIL2\t0.1\n")
    return path


@pytest.fixture
def counts_file(tmp_path):
    """Long-form counts table."""
    path = tmp_path / "counts.tsv"
    path.write_text("gene\tterm\tcount\nCD4\timmunity\t120\nCD4\tcancer\t30\nTP53\tcancer\t5000\n")
    return path


def test_normalise_symbols():
    """Test stripping, de-duplication and order."""
    assert normalise_symbols([" TP53", "EGFR ", "TP53", "", "MYC"]) == ["TP53", "EGFR", "MYC"]
    assert normalise_symbols("immunity", kind="term") == ["immunity"]

    with pytest.raises(EmptyInputError, match="term"):
        normalise_symbols([], kind="term")
    with pytest.raises(EmptyInputError):
        normalise_symbols(["", "  "])


def test_filter_ambiguous():
    """Test ambiguous gene removal."""
    assert set(filter_ambiguous({"CAT", "TP53", "SET"})) == {"TP53"}
    assert filter_ambiguous(["cat", "TP53", "Max", "EGFR"]) == ["TP53", "EGFR"]
    assert filter_ambiguous(["CAT", "TP53"], enabled=False) == ["CAT", "TP53"]
    assert filter_ambiguous(["TP53", "EGFR"], ambiguous={"egfr"}) == ["TP53"]


def test_ambiguous_gene_list():
    """Test the curated list holds clean upper-case symbols."""
    assert 55 <= len(AMBIGUOUS_GENES) <= 65
    assert {"CAT", "SET", "MARS", "CAST", "CLOCK"} <= AMBIGUOUS_GENES
    assert all(symbol == symbol.strip().upper() for symbol in AMBIGUOUS_GENES)


def test_build_counts_table():
    """Test a complete counts table build."""
    provider = FakeProvider()
    table, report = build_counts_table(["CD4", "IL2"], ["immunity", "cancer"], provider, max_workers=2)

    assert table.columns == ["gene", "term", "count"]
    assert table.height == 4
    # Rows follow the gene order, not completion order
    assert table["gene"].to_list() == ["CD4", "CD4", "IL2", "IL2"]
    assert table.filter((pl.col("gene") == "CD4") & (pl.col("term") == "cancer"))["count"].item() == 9

    assert isinstance(report, LookupReport)
    assert report.requested == 2
    assert report.succeeded == ["CD4", "IL2"]
    assert report.n_failed == 0
    assert not report.cancelled
    assert sorted(provider.calls) == ["CD4", "IL2"]


def test_build_counts_table_isolates_failures():
    """Test one failing lookup does not affect the others."""
    provider = FakeProvider(failing={"BAD1"}, negative={"BAD2"})
    genes = ["CD4", "BAD1", "IL2", "BAD2", "MYC"]
    table, report = build_counts_table(genes, ["immunity"], provider, max_workers=3)

    assert table["gene"].to_list() == ["CD4", "IL2", "MYC"]
    assert report.succeeded == ["CD4", "IL2", "MYC"]
    assert set(report.failures) == {"BAD1", "BAD2"}
    assert "HTTP 500" in report.failures["BAD1"]
    assert "negative" in report.failures["BAD2"]
    assert report.to_dict()["failed"] == 2


class MalformedProvider(FakeProvider):
    """Returns replies that are not term -> integer mappings for some genes."""

    def lookup(self, gene, terms):
        if gene == "NONE":
            return {terms[0]: None}
        if gene == "TEXT":
            return {terms[0]: "n/a"}
        if gene == "LIST":
            return [1, 2]
        return super().lookup(gene, terms)


def test_build_counts_table_isolates_malformed_replies():
    """Test a malformed provider reply fails only its own gene."""
    provider = MalformedProvider()
    genes = ["A", "NONE", "C", "TEXT", "LIST"]
    table, report = build_counts_table(genes, ["t"], provider, max_workers=2)

    assert table["gene"].to_list() == ["A", "C"]
    assert report.succeeded == ["A", "C"]
    assert set(report.failures) == {"NONE", "TEXT", "LIST"}
    assert report.n_failed == 3


def test_build_counts_table_missing_pairs():
    """Test pairs the provider did not return are recorded, not zero-filled."""
    provider = FakeProvider(partial={"CD4"})
    table, report = build_counts_table(["CD4"], ["immunity", "cancer"], provider)

    assert table.height == 1
    assert table["term"].to_list() == ["immunity"]
    assert report.missing_pairs == [("CD4", "cancer")]


def test_build_counts_table_cancelled():
    """Test cancellation keeps what was already fetched."""
    cancel_event = threading.Event()
    provider = CancellingProvider(cancel_event)
    genes = [f"G{i}" for i in range(20)]

    table, report = build_counts_table(genes, ["t"], provider, max_workers=1, cancel_event=cancel_event)

    assert report.cancelled
    assert len(report.succeeded) >= 1
    assert len(report.succeeded) + len(report.skipped) == 20
    assert table.height == len(report.succeeded)
    assert len(provider.calls) == len(report.succeeded)


def test_build_counts_table_empty():
    """Test an empty gene list gives an empty table with the right schema."""
    table, report = build_counts_table([], ["t"], FakeProvider())
    assert table.height == 0
    assert table.schema["count"] == pl.Int64
    assert report.requested == 0


def test_lookup_report_merge():
    """Test merging a resumed build into the original report."""
    first = LookupReport(requested=4, succeeded=["A"], failures={"B": "x"}, skipped=["C", "D"])
    resumed = LookupReport(requested=2, succeeded=["C"], failures={"D": "y"})

    merged = first.merge(resumed)
    assert merged.requested == 4
    assert merged.succeeded == ["A", "C"]
    assert merged.failures == {"B": "x", "D": "y"}
    assert not merged.cancelled


def test_load_gene_list(gene_file, gene_table_file):
    """Test loading plain and tabular gene lists."""
    assert load_gene_list(gene_file) == ["TP53", "BRCA1", "EGFR"]
    assert load_gene_list(gene_table_file) == ["CD4", "CD8A", "IL2"]


def test_load_counts_table(counts_file):
    """Test loading a counts table."""
    table = load_counts_table(counts_file)
    assert table.columns == ["gene", "term", "count"]
    assert table.height == 3
    assert table.schema["count"] == pl.Int64


def test_validate_counts_table():
    """Test counts table validation."""
    renamed = validate_counts_table(pl.DataFrame({"gene_id": ["A"], "term": ["t"], "count": [1]}))
    assert renamed.columns == ["gene", "term", "count"]

    with pytest.raises(ValueError, match="missing columns"):
        validate_counts_table(pl.DataFrame({"gene": ["A"], "count": [1]}))
    with pytest.raises(ValueError, match="non-negative"):
        validate_counts_table(pl.DataFrame({"gene": ["A"], "term": ["t"], "count": [-3]}))
