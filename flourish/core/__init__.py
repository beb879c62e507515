"""Core domain models and scheduling rules."""
