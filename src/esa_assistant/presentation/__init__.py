"""Inbound surfaces: Slack listeners and the HTTP health app."""
