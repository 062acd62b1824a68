"""Junk packet generation, allowed-IP routing table and UDP bind layer for an AmneziaWG-style tunnel."""

__version__ = "0.1.0"