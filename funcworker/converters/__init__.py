"""Converters between wire messages and native values."""
