"""Observation and annotation reconciliation engine."""
