"""
Services package for Market Stream.

Contains:
- streamer: Finnhub WebSocket trade streaming (crypto and stock)
"""
