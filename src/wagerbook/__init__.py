"""Prediction pool betting ledger and settlement service."""
