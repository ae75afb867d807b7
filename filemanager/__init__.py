"""
Dual-backend file manager core.

Storage abstraction layer addressing files and folders on a local
filesystem or an S3-compatible object store through one contract.
"""
