"""Presence, state sync and the message pipeline behind the socket gateway."""
