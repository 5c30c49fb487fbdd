"""Assistance service aggregation and reconciliation pipeline."""
