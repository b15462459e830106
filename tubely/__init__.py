"""Tubely video ingest service."""
