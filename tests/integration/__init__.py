"""
Integration tests for Bingo Swarm.

Participants run their full state machine on real threads, driven by
scripted push events, with the REST client and hub replaced by fakes.
"""
