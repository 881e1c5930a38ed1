"""Exceptions raised by the literature scoring pipeline."""


class PubScoreError(Exception):
    """Base class for all pubscore errors."""


class ExternalLookupFailure(PubScoreError):
    """A single literature count lookup failed.

    Raised by count providers and recovered by the caller: the failing gene
    is recorded in the lookup report and skipped.
    """

    def __init__(self, gene: str, message: str):
        self.gene = gene
        self.message = message
        super().__init__(f"Lookup failed for {gene}: {message}")


class EmptyInputError(PubScoreError, ValueError):
    """A gene set, term set or universe is empty."""


class EmptyCountsError(PubScoreError, ValueError):
    """No counts could be obtained, so the literature score is undefined."""


class InsufficientUniverseError(PubScoreError, ValueError):
    """The universe pool is smaller than the panel size to sample."""

    def __init__(self, pool_size: int, sample_size: int):
        self.pool_size = pool_size
        self.sample_size = sample_size
        super().__init__(
            f"Cannot sample {sample_size} genes without replacement "
            f"from a universe of {pool_size} genes"
        )


class InvalidSimulationCount(PubScoreError, ValueError):
    """The number of simulations is not a positive integer."""


class LookupCancelled(PubScoreError):
    """A counts table build was cancelled before every gene was looked up."""


class SimulationCancelled(PubScoreError):
    """The null distribution simulation was cancelled between batches."""
