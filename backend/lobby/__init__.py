"""Lobby: a minimal real-time group chat server."""
