"""
ogrexport
=========

Coalescing OGR file exports: one converter run per distinct export, streamed
to every client that asked for it.
"""

__version__ = "1.0.0"
