"""
Value Screener

Ingests an equity universe from Finnhub, normalizes prices to a reporting
currency, scores every identifier with Graham-style value and safety
metrics and persists the enriched records to PostgreSQL.
"""

__version__ = "0.1.0"
