"""Source router — resolves the ordered candidate list for a category.

Filters out disabled, credential-less and circuit-open providers plus any
that violate the caller's constraints, then orders the rest by category
priority, reliability (descending) and declared cost. The source id is the
final tie-break so the order is deterministic for a given registry state.
"""

from __future__ import annotations

from typing import Mapping

import structlog

from seawater.shared.providers.circuit_breaker import CircuitBreaker, CircuitState
from seawater.shared.providers.types import FetchOptions, SourceConfig

logger = structlog.get_logger(__name__)


def candidate_sort_key(config: SourceConfig, category: str) -> tuple[int, float, float, str]:
    return (
        config.priority_for(category),
        -config.reliability,
        config.cost_per_call,
        config.source_id,
    )


class SourceRouter:
    """Read-only view over the orchestrator's registry and breakers."""

    def __init__(
        self,
        sources: Mapping[str, SourceConfig],
        breakers: Mapping[str, CircuitBreaker],
    ) -> None:
        self._sources = sources
        self._breakers = breakers

    def candidates(
        self, category: str, options: FetchOptions | None = None
    ) -> tuple[list[SourceConfig], dict[str, str]]:
        """Return ``(ordered candidates, {skipped source: reason})``."""
        options = options or FetchOptions()
        candidates: list[SourceConfig] = []
        skipped: dict[str, str] = {}

        for config in list(self._sources.values()):
            sid = config.source_id
            if not config.serves(category):
                continue

            if not config.enabled:
                skipped[sid] = "disabled"
                continue

            if not config.has_credentials:
                skipped[sid] = "missing_credentials"
                continue

            if options.max_cost is not None and config.cost_per_call > options.max_cost:
                skipped[sid] = "over_max_cost"
                continue

            if options.source_type is not None and config.source_type != options.source_type:
                skipped[sid] = "source_type_mismatch"
                continue

            breaker = self._breakers.get(sid)
            if breaker is not None and breaker.state == CircuitState.OPEN:
                logger.debug("source_circuit_open", source=sid, category=category)
                skipped[sid] = "circuit_open"
                continue

            candidates.append(config)

        candidates.sort(key=lambda c: candidate_sort_key(c, category))
        if not candidates:
            logger.warning(
                "no_available_sources",
                category=category,
                skipped=skipped,
            )
        return candidates, skipped

    def fallback_chain(self, category: str, options: FetchOptions | None = None) -> list[str]:
        return [c.source_id for c in self.candidates(category, options)[0]]
