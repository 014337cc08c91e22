from alps.stats.metadata import MetadataCacheGate
from alps.stats.orchestrator import DatabaseStatsOrchestrator, LiveStatsOrchestrator
from alps.stats.tokens import TokenResolver
from alps.stats.types import (
    BuildDetailsStatistics,
    BuildStatistics,
    HealthBadge,
    MetadataTier,
    RepositoryMetadata,
)

__all__ = [
    "BuildDetailsStatistics",
    "BuildStatistics",
    "DatabaseStatsOrchestrator",
    "HealthBadge",
    "LiveStatsOrchestrator",
    "MetadataCacheGate",
    "MetadataTier",
    "RepositoryMetadata",
    "TokenResolver",
]
