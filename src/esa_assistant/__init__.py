"""Slack assistant that answers questions from esa articles and drafts new ones."""

__version__ = "0.1.0"
