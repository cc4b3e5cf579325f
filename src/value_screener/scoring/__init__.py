from .graham import GrahamVerdict, ScoringEngine

__all__ = ["GrahamVerdict", "ScoringEngine"]
