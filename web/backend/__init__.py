"""FastAPI backend: OAuth routes + info routes."""
