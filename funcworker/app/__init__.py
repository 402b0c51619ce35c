"""Function registry, invocation context and worker runtime."""
