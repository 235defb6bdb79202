"""Inbound event processing."""

from .processor import EventProcessor, ReplaySummary

__all__ = ["EventProcessor", "ReplaySummary"]
