"""Graph engine HTTP backend."""
