"""
Ingestion Module
================
Text and markdown document extraction.
"""

from .text_extractor import ExtractedText, ExtractionConfig, TextFileExtractor

__all__ = ["ExtractedText", "ExtractionConfig", "TextFileExtractor"]
