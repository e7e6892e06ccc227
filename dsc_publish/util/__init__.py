"""
Utility functions and helpers.

Modules:
- files: Script decoding and read-only aware deletion
- redact: Scrubbing storage secrets from messages
"""
