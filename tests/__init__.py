"""
Test suite for Bingo Swarm.

This package contains:
- unit/: single components exercised in isolation
- integration/: participants and the spawn controller run end to end
  against in-memory fakes of the backend
"""
