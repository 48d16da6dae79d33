"""Blog content assistant."""
