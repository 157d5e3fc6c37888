"""core.contracts

Narrow interfaces (ABCs) through which the signing core talks to external
collaborators: file storage, the audit store and outbound notifications.

This package intentionally contains only interfaces and shared type definitions.
"""
