"""
PubScore
========

Literature enrichment scores for gene sets, tested against random gene
panels drawn from a reference universe.
"""

from .pipeline import PubScore, UniverseCache, pubscore, evaluate_significance
from .config import PubScoreConfig
from .data import (
    AMBIGUOUS_GENES as AMBIGUOUS_GENES,
    LookupReport as LookupReport,
    build_counts_table as build_counts_table,
    filter_ambiguous as filter_ambiguous,
    load_counts_table as load_counts_table,
    load_gene_list as load_gene_list,
)
from .exceptions import (
    PubScoreError as PubScoreError,
    ExternalLookupFailure as ExternalLookupFailure,
    EmptyInputError as EmptyInputError,
    EmptyCountsError as EmptyCountsError,
    InsufficientUniverseError as InsufficientUniverseError,
    InvalidSimulationCount as InvalidSimulationCount,
    LookupCancelled as LookupCancelled,
    SimulationCancelled as SimulationCancelled,
)
from .provider import (
    LiteratureCountProvider as LiteratureCountProvider,
    EntrezCountProvider as EntrezCountProvider,
    TableCountProvider as TableCountProvider,
)
from .stats import (
    compute_literature_score as compute_literature_score,
    build_null_distribution as build_null_distribution,
    calculate_significance as calculate_significance,
)
from .utils import setup_logging as setup_logging, ensure_dir as ensure_dir

__version__ = "0.1.0"

__all__ = [
    "PubScore",
    "UniverseCache",
    "pubscore",
    "evaluate_significance",
    "PubScoreConfig",
    "AMBIGUOUS_GENES",
    "LookupReport",
    "build_counts_table",
    "filter_ambiguous",
    "load_counts_table",
    "load_gene_list",
    "PubScoreError",
    "ExternalLookupFailure",
    "EmptyInputError",
    "EmptyCountsError",
    "InsufficientUniverseError",
    "InvalidSimulationCount",
    "LookupCancelled",
    "SimulationCancelled",
    "LiteratureCountProvider",
    "EntrezCountProvider",
    "TableCountProvider",
    "compute_literature_score",
    "build_null_distribution",
    "calculate_significance",
    "setup_logging",
    "ensure_dir",
]
