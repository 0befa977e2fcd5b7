"""
Market Stream - live trade streaming from Finnhub.

Keeps resilient WebSocket subscriptions to crypto and stock trade feeds and
fans decoded trades out to registered handlers.
"""

__version__ = "1.0.0"
__author__ = "Market Stream Team"
