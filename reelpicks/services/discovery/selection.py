import math
from collections import defaultdict

from loguru import logger

from reelpicks.models.candidate import ScoredCandidate, SelectionResult


class DiversitySelector:
    """
    Greedy top-N selection with a genre cap.

    Picks follow final score order. A candidate whose genres already hit the cap is
    deferred in favour of the next one inside a small lookahead window. When the
    whole window is capped, the best remaining candidate is taken anyway.

    Re-releases (same title and year under another id) are held back and only
    used when the selection would otherwise come up short.
    """

    def __init__(self, lookahead_window: int = 5, genre_max_share: float = 0.4):
        self.lookahead_window = lookahead_window
        self.genre_max_share = genre_max_share

    @staticmethod
    def selection_diversity(genre_ids: list[int], genre_counts: dict[int, int]) -> float:
        """Share of the candidate's genres not yet present in the selection."""
        if not genre_ids:
            return 0.5
        overlap = sum(1 for g in genre_ids if genre_counts.get(g, 0) > 0)
        return 1.0 - overlap / len(genre_ids)

    def _is_overrepresented(self, candidate: ScoredCandidate, genre_counts: dict[int, int], cap: int) -> bool:
        return any(genre_counts.get(g, 0) >= cap for g in candidate.genre_ids)

    def select(self, scored: list[ScoredCandidate], target_count: int) -> SelectionResult:
        """Pick up to ``target_count`` candidates. Same input, same output."""
        ranked = list(scored)
        if target_count <= 0 or not ranked:
            return SelectionResult(ranked=ranked)

        cap = max(1, math.ceil(self.genre_max_share * target_count))
        remaining = list(ranked)
        selected: list[ScoredCandidate] = []
        genre_counts: dict[int, int] = defaultdict(int)
        seen_titles: set[str] = set()
        held_back: list[ScoredCandidate] = []
        deferred = 0

        def take(pick: ScoredCandidate) -> None:
            # Components stay as scored so final_score remains their weighted sum
            diversity = self.selection_diversity(pick.genre_ids, genre_counts)
            selected.append(pick.model_copy(update={"selection_diversity": diversity}))
            if pick.candidate.title_key is not None:
                seen_titles.add(pick.candidate.title_key)
            for gid in set(pick.genre_ids):
                genre_counts[gid] += 1

        while remaining and len(selected) < target_count:
            kept = []
            for candidate in remaining:
                if candidate.candidate.title_key in seen_titles:
                    held_back.append(candidate)
                else:
                    kept.append(candidate)
            remaining = kept
            if not remaining:
                break

            pick_index = 0
            for index, candidate in enumerate(remaining[: self.lookahead_window]):
                if not self._is_overrepresented(candidate, genre_counts, cap):
                    pick_index = index
                    break
            deferred += pick_index
            take(remaining.pop(pick_index))

        if len(selected) < target_count and held_back:
            position = {c.tmdb_id: i for i, c in enumerate(ranked)}
            for pick in sorted(held_back, key=lambda c: position[c.tmdb_id])[: target_count - len(selected)]:
                take(pick)

        selected_ranks = {c.tmdb_id: i for i, c in enumerate(selected, start=1)}
        logger.info(f"Selected {len(selected)}/{target_count} from {len(ranked)} candidates ({deferred} deferrals)")
        return SelectionResult(selected=selected, selected_ranks=selected_ranks, ranked=ranked, deferred=deferred)
