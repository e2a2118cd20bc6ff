"""
Trace Extractor - reconstruct and export AI coding assistant conversations.

Reads the editor's key-value store, rebuilds each conversation from its
stored bubbles, and renders it to Markdown or JSON.
"""

__version__ = "1.0.0"
