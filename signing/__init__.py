"""
Signing core.

Multi-party signing workflow: document/recipient model, the signing state
machine with order enforcement, the append-only audit trail and the
completion outbox.
"""
