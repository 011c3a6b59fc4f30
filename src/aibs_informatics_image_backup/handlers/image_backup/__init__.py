"""Scheduled image backup and retention sweep handlers."""
