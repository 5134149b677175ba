"""Adapters for esa, the generative backend and connection liveness."""
