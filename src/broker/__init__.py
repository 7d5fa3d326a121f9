"""Streaming log interfaces and adapters."""
