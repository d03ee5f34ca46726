"""Credential storage and settings collaborators."""
