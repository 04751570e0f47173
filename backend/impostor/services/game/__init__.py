"""Game domain services: rooms, roles, prompts, answers, votes and round state.

This package holds the round state machine. HTTP routes and socket handlers
import from here and stay free of game rules. Nothing in this package keeps
game state in memory; every decision is computed from a fresh read of the
store.
"""
