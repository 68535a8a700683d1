"""Replay harness and same-day headline registry."""
