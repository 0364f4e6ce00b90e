"""Automated range rebalancer for Cetus concentrated-liquidity positions on Sui."""

__version__ = "0.1.0"
