"""DeFi Position Tracker - Solana wallet ingestion and position lifecycle reconstruction."""

__version__ = "0.1.0"
