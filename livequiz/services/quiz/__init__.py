"""Quiz session services: state machine, answer ingestion, scoring, ranking.

This package holds the session logic that HTTP routes and socket handlers
call into, keeping transport concerns separated from the session rules.
"""
