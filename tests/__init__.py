"""
ctxkb test suite.

- Unit tests for individual components
- Integration tests for the full index -> embed -> graph pipeline
"""
