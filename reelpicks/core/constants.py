"""
Core constants used across the pipeline. Keep these simple and documented.
"""

from typing import Final

# Score used when a signal is unavailable (no taste vector, no embedding, no genres)
NEUTRAL_SCORE: Final[float] = 0.5
# Rating score for items without any rating data
MISSING_RATING_SCORE: Final[float] = 0.4

# Bayesian prior for weighted rating: mean rating C and vote weight m
RATING_PRIOR_MOVIE: Final[float] = 6.8
RATING_PRIOR_SERIES: Final[float] = 7.2
RATING_PRIOR_VOTES: Final[int] = 300

# How many of the latest watched items count as recent consumption for diversity
RECENT_HISTORY_WINDOW: Final[int] = 20

# Hard cap on evidence entries per selected candidate
MAX_EVIDENCE_PER_CANDIDATE: Final[int] = 3
