"""Local model coordination, scheduling and engine adapters."""
