"""
voxkey - local hotkey dictation and meeting capture with speaker identification.
"""

__version__ = "0.1.0"
