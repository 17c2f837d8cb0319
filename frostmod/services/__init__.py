"""Moderation, settings and collaborator services."""
