"""
Error taxonomy for the discovery pipeline.

Only ``ConfigurationError``, ``CandidateExhaustedError`` and ``PersistenceFailure`` ever
escape a run. The others are raised inside a stage, logged, and converted into a
degraded result by the stage that caught them.
"""


class DiscoveryError(Exception):
    """Base class for every pipeline error."""


class SourceUnavailable(DiscoveryError):
    """A provider call failed or the provider is not configured."""

    def __init__(self, source: str, reason: str = ""):
        self.source = source
        self.reason = reason
        super().__init__(f"Source '{source}' unavailable: {reason}" if reason else f"Source '{source}' unavailable")


class EnrichmentMiss(DiscoveryError):
    """A detail or credits fetch failed for a single candidate."""

    def __init__(self, tmdb_id: int, reason: str = ""):
        self.tmdb_id = tmdb_id
        super().__init__(f"Enrichment failed for {tmdb_id}: {reason}")


class NoTasteSignal(DiscoveryError):
    """The user has no taste vector to score similarity against."""


class PersistenceFailure(DiscoveryError):
    """The final bulk write failed. Nothing from the run was committed."""


class ConfigurationError(DiscoveryError, ValueError):
    """Invalid weights or counts. Raised before a run is created."""


class CandidateExhaustedError(DiscoveryError):
    """Every source and the global pool together produced no usable candidate."""


class RunStateError(DiscoveryError):
    """A run was finalized more than once."""
