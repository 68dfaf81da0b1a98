"""
DOCRELAY — Conversational relay between a chat channel,
a shared Notion page, and GitHub issues.
"""

from docrelay.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
