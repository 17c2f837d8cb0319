"""Configuration models for FrostMod."""
