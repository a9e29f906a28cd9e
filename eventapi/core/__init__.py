"""Core execution model — the stage chain and its built-in stages."""
