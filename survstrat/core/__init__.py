"""Core data structures, exceptions and provenance IR."""
