"""Application modules.

This package contains the feature modules of the Tubely API:
- auth: Bearer token validation
- media: Stream probing, aspect classification, fast-start remuxing, key derivation
- video: Video records and the upload pipeline
"""
