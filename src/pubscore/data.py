"""
Gene and term handling and counts table construction for literature scoring.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import polars as pl
from tqdm.auto import tqdm

from pubscore.exceptions import EmptyInputError
from pubscore.utils import TQDM_KWARGS

if TYPE_CHECKING:
    from pubscore.provider import LiteratureCountProvider

logger = logging.getLogger(__name__)

# Gene symbols that are also common words or abbreviations. Searching PubMed
# for them returns many records unrelated to the gene.
AMBIGUOUS_GENES = frozenset({
    "PC", "JUN", "IMPACT", "ACHE", "SRI", "SET", "CS", "PROC",
    "MET", "SHE", "CAD", "DDT", "PIGS", "SARS", "REST", "GC", "CP",
    "STAR", "SI", "GAN", "MARS", "SDS", "AGA", "NHS", "CPE", "POR",
    "MAX", "CAT", "LUM", "ANG", "POLE", "CLOCK", "TANK", "ITCH",
    "AES", "CIC", "FST", "CAPS", "COPE", "F2", "AFM", "SPR",
    "PALM", "C2", "BAD", "GPI", "CA2", "SMS", "INVS", "WARS", "HP",
    "GAL", "SON", "BORA", "MBP", "MAK", "MALL", "COIL", "CAST",
})

COUNTS_SCHEMA = {"gene": pl.Utf8, "term": pl.Utf8, "count": pl.Int64}

GENE_COLUMNS = ("gene", "gene_id", "symbol")


def normalise_symbols(values: Iterable[str], kind: str = "gene") -> List[str]:
    """
    Strip, drop empty entries and de-duplicate a list of genes or terms.

    Args:
        values: Input symbols
        kind: What the symbols are, used in messages

    Returns:
        Unique symbols in first-seen order
    """
    if isinstance(values, str):
        values = [values]

    seen = set()
    unique = []
    n_input = 0
    for value in values:
        n_input += 1
        value = str(value).strip()
        if value and value not in seen:
            seen.add(value)
            unique.append(value)

    if not unique:
        raise EmptyInputError(f"At least one {kind} must be provided")
    if len(unique) < n_input:
        logger.warning(f"Dropped {n_input - len(unique)} empty or duplicate {kind} entries")
    return unique


def filter_ambiguous(
    genes: Iterable[str],
    enabled: bool = True,
    ambiguous: Iterable[str] = AMBIGUOUS_GENES,
) -> List[str]:
    """
    Remove genes whose symbol is also a common word or abbreviation.

    Args:
        genes: Gene symbols
        enabled: If False, return the genes unchanged
        ambiguous: Symbols to exclude, matched case-insensitively

    Returns:
        Remaining genes in input order
    """
    genes = list(genes)
    if not enabled:
        return genes
    excluded = {symbol.upper() for symbol in ambiguous}
    kept = [gene for gene in genes if gene.upper() not in excluded]
    if len(kept) < len(genes):
        logger.debug(f"Removed {len(genes) - len(kept)} ambiguous genes")
    return kept


@dataclass
class LookupResult:
    """Outcome of looking up one gene."""
    gene: str
    counts: Optional[Dict[str, int]] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.counts is not None


@dataclass
class LookupReport:
    """Which lookups of a counts table build succeeded, failed or never ran."""
    requested: int = 0
    succeeded: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    missing_pairs: List[Tuple[str, str]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return bool(self.skipped)

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    def merge(self, resumed: "LookupReport") -> "LookupReport":
        """Combine this report with the report of a resumed build over its skipped genes."""
        failures = dict(self.failures)
        failures.update(resumed.failures)
        return LookupReport(
            requested=self.requested,
            succeeded=self.succeeded + resumed.succeeded,
            failures=failures,
            missing_pairs=self.missing_pairs + resumed.missing_pairs,
            skipped=list(resumed.skipped),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "requested": self.requested,
            "succeeded": len(self.succeeded),
            "failed": self.n_failed,
            "missing_pairs": len(self.missing_pairs),
            "skipped": len(self.skipped),
            "failures": dict(self.failures),
        }


def _lookup_gene(
    provider: "LiteratureCountProvider",
    gene: str,
    terms: Sequence[str],
    cancel_event: threading.Event,
) -> LookupResult:
    """Look up one gene, turning any provider failure into a failed result."""
    if cancel_event.is_set():
        return LookupResult(gene=gene, skipped=True)

    try:
        counts = provider.lookup(gene, terms)
        checked = {}
        for term, hits in counts.items():
            hits = int(hits)
            if hits < 0:
                return LookupResult(gene=gene, error=f"negative count {hits} for term {term!r}")
            checked[term] = hits
    except Exception as e:
        return LookupResult(gene=gene, error=str(e) or type(e).__name__)
    return LookupResult(gene=gene, counts=checked)


def build_counts_table(
    genes: Sequence[str],
    terms: Sequence[str],
    provider: "LiteratureCountProvider",
    max_workers: int = 3,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False,
    desc: str = "Literature lookups",
) -> Tuple[pl.DataFrame, LookupReport]:
    """
    Look up every gene against every term and collect a long-form counts table.

    Lookups run on a bounded thread pool. A failing lookup is recorded in the
    report and its gene left out of the table; the other lookups carry on.
    Setting ``cancel_event`` makes the remaining lookups return without
    calling the provider; what was fetched so far is still returned.

    Args:
        genes: Gene symbols
        terms: Terms of interest
        provider: Count provider queried once per gene
        max_workers: Number of concurrent lookups
        cancel_event: Optional event checked before each lookup
        show_progress: Display a tqdm progress bar
        desc: Progress bar label

    Returns:
        Tuple of (DataFrame with gene, term and count columns, LookupReport)
    """
    cancel_event = cancel_event if cancel_event is not None else threading.Event()
    terms = list(terms)
    report = LookupReport(requested=len(genes))
    results: Dict[str, LookupResult] = {}

    if genes:
        workers = max(1, min(max_workers, len(genes)))
        logger.debug(f"Looking up {len(genes)} genes x {len(terms)} terms with {workers} workers")
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(_lookup_gene, provider, gene, terms, cancel_event): gene
                for gene in genes
            }
            with tqdm(total=len(futures), desc=desc, unit="gene",
                      disable=not show_progress, **TQDM_KWARGS) as pbar:
                try:
                    for future in as_completed(futures):
                        result = future.result()
                        results[result.gene] = result
                        pbar.update(1)
                except KeyboardInterrupt:
                    cancel_event.set()
                    raise

    gene_col, term_col, count_col = [], [], []
    for gene in genes:
        result = results[gene]
        if result.skipped:
            report.skipped.append(gene)
            continue
        if not result.ok:
            report.failures[gene] = result.error
            logger.warning(f"Lookup failed for {gene}: {result.error}")
            continue

        report.succeeded.append(gene)
        for term in terms:
            if term not in result.counts:
                report.missing_pairs.append((gene, term))
                continue
            gene_col.append(gene)
            term_col.append(term)
            count_col.append(result.counts[term])

    if report.missing_pairs:
        logger.warning(f"{len(report.missing_pairs)} gene/term pairs were not returned by the provider")
    if report.skipped:
        logger.warning(f"Lookups cancelled: {len(report.skipped)} of {len(genes)} genes were not queried")

    table = pl.DataFrame(
        {"gene": gene_col, "term": term_col, "count": count_col},
        schema=COUNTS_SCHEMA,
    )
    return table, report


def validate_counts_table(table: pl.DataFrame) -> pl.DataFrame:
    """
    Check and coerce a long-form counts table to the gene/term/count schema.

    Args:
        table: DataFrame with gene (or gene_id), term and count columns

    Returns:
        DataFrame with exactly the gene, term and count columns
    """
    if "gene" not in table.columns and "gene_id" in table.columns:
        table = table.rename({"gene_id": "gene"})
    missing = [col for col in COUNTS_SCHEMA if col not in table.columns]
    if missing:
        raise ValueError(f"Counts table is missing columns: {', '.join(missing)}")

    table = table.select(
        [pl.col(name).cast(dtype) for name, dtype in COUNTS_SCHEMA.items()]
    )
    if table["count"].null_count() > 0 or (table.height > 0 and table["count"].min() < 0):
        raise ValueError("Counts must be non-negative integers")
    return table


def load_counts_table(file_path: Union[str, Path]) -> pl.DataFrame:
    """
    Load a long-form counts table.

    Args:
        file_path: Tab-delimited file with gene, term and count columns

    Returns:
        DataFrame with gene, term and count columns
    """
    df = pl.read_csv(file_path, separator='\t', has_header=True)
    return validate_counts_table(df)


def load_gene_list(file_path: Union[str, Path]) -> List[str]:
    """
    Load gene symbols from a file.

    Accepts either a plain list with one symbol per line or a tab-delimited
    file with a gene, gene_id or symbol column.

    Args:
        file_path: Path to gene file

    Returns:
        Unique gene symbols in file order
    """
    df = pl.read_csv(file_path, separator='\t', has_header=True, infer_schema_length=0)
    column = next((col for col in GENE_COLUMNS if col in df.columns), None)

    if column is None:
        # No recognised header, so the first line is a gene as well
        df = pl.read_csv(file_path, separator='\t', has_header=False, infer_schema_length=0)
        column = df.columns[0]

    genes = normalise_symbols(df[column].drop_nulls().to_list(), kind="gene")
    logger.info(f"Loaded {len(genes)} genes from {file_path}")
    return genes
