"""Core data structures and service interfaces."""
