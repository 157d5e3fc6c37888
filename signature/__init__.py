"""
Signature module.

Field rendering onto the source PDF (overlay merge), signature image
decoding, AES-GCM sealing of signature images and passwords, and PDF
password protection of completed documents.
"""
