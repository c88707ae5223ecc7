"""Data models for the sticky notes engine."""
