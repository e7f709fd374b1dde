"""
ClawLedger - trade ingestion, classification and ranking for autonomous
trading agents on Solana and Monad.
"""

__version__ = "1.0.0"
