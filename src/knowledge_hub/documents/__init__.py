"""
Documents — domain models and the lifecycle state machine.

The lifecycle engine is the single writer of a document's ``status``.
"""
