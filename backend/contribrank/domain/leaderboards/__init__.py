"""Ranking store: windowed sorted sets derived from contribution totals."""
