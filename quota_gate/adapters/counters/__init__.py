"""Route counter strategies.

Two interchangeable strategies sit behind one interface: an in-process
counter map for single-instance deployments and a Redis-backed one whose
counts are shared by every instance pointing at the same store.
"""
