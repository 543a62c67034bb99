"""Knowledge base content reconstruction."""
