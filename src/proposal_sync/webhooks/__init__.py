"""Prolibu webhook ingestion: payload adapter and event validation."""
