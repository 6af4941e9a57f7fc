"""Slash commands through which dispatch admins drive the core."""
