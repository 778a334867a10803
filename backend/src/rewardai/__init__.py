"""
RewardAI - batch token distribution on the XRP Ledger funded through x402.
"""

__version__ = "0.1.0"
