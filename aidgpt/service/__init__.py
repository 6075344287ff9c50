"""HTTP service exposing the command pipeline."""
