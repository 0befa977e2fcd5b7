"""Finnhub trade streamer service."""
