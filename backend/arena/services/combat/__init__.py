"""Combat domain services: session store, timers and pattern sequencing.

This package holds the authoritative game state and the logic that mutates
it. Socket handlers import from here, keeping transport concerns separate
from the rules of the table.
"""
