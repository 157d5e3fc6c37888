"""
Completion certificates.

Deterministic certificate ids, document hashing, the certificate PDF and
verification of a certificate against the currently stored document.
"""
