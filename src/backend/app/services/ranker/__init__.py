"""Relevance ranking for keyword search"""

from .ranking_engine import RankingEngine, RankingWeights

__all__ = ["RankingEngine", "RankingWeights"]
