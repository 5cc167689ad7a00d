"""Narratum: orchestration pipeline turning narrative intents into validated text."""

__version__ = "0.1.0"
