"""Shared helpers for medsync."""
