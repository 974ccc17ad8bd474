"""Application layer: sessions, run options and the model registry."""
