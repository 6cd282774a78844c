"""
pocketstream test suite.

This package contains:
- unit/: Unit tests (no collaborator binaries, temporary directories only)
- integration/: Multi-component tests against fake collaborator CLIs
- fakes.py: In-memory ProcessController doubles
"""
