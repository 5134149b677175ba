"""Small, dependency-free helpers shared by services and handlers."""
