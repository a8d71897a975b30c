"""HTTP API for the Secure Viewer service."""
