"""Core gap-aware synchronization engine."""
