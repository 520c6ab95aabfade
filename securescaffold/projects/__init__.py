"""Project records, their persistence and the creation state machine."""
