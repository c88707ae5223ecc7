"""Service layer for the sticky notes engine."""
