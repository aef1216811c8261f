"""Optimistic collection sync engine for trading-card collections."""
