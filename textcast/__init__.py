"""
textcast
========
Batch text-to-speech conversion of article files with optional
iTunes / Music playlist import.
"""

__version__ = "1.0.0"
