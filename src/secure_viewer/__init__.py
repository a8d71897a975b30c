"""Secure document delivery: single-use nonces, rate limiting, encrypted payloads, forensic watermarks."""

__version__ = "0.1.0"
