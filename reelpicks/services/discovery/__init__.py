"""
Discovery pipeline.

Sources candidates from global and personalized providers, fills metadata gaps,
scores them on similarity, novelty, rating and diversity, picks a diverse top N
and stores the run with evidence for each pick.
"""

from reelpicks.services.discovery.enrichment import CandidateEnricher
from reelpicks.services.discovery.evidence import EvidenceGenerator
from reelpicks.services.discovery.filtering import CandidateFilter, merge_with_pool
from reelpicks.services.discovery.pipeline import DiscoveryPipeline
from reelpicks.services.discovery.pool import GlobalPoolCache
from reelpicks.services.discovery.scoring import CandidateScorer, ScoringContext
from reelpicks.services.discovery.selection import DiversitySelector
from reelpicks.services.discovery.sources import CandidateSourcing
from reelpicks.services.discovery.storage import RecommendationStorage

__all__ = [
    "CandidateSourcing",
    "CandidateEnricher",
    "CandidateFilter",
    "merge_with_pool",
    "GlobalPoolCache",
    "CandidateScorer",
    "ScoringContext",
    "DiversitySelector",
    "EvidenceGenerator",
    "RecommendationStorage",
    "DiscoveryPipeline",
]
