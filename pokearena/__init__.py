"""Authoritative game-simulation core for the trainer battle server."""
