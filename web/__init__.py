"""AonyxEngine web layer."""
