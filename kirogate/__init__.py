"""Kiro API stream parsing, thinking block extraction and conversion to OpenAI and Anthropic formats."""

__version__ = "0.1.0"