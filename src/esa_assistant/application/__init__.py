"""Request orchestration: mention and reaction workflows."""
