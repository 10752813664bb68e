"""
Core utilities: shared exception taxonomy used across the decoder, store,
listener, reconciler, and API server.
"""
