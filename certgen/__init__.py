"""
Certificate video generator.

Composites a circular photo and a name onto a template video with FFmpeg.
"""

__version__ = "1.0.0"
