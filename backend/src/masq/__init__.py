"""Realtime core of the Masq backend."""
