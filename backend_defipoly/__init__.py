"""
Backend Defipoly: off-chain game-state indexer for the Defipoly Solana program.

Listens to program transactions (websocket subscription plus periodic gap
reconciliation), decodes program events into game actions, and projects them
into ownership, income, and leaderboard aggregates served over HTTP.
"""

__version__ = "0.1.0"
