"""DOCRELAY identity constants."""

__version__ = "0.3.0"
__codename__ = "DOCRELAY"
__tagline__ = "Chat in. Page out."

BANNER = r"""
  ___   ___   ___ ___ ___ _      ___   __
 |   \ / _ \ / __| _ \ __| |    /_\ \ / /
 | |) | (_) | (__|   / _|| |__ / _ \ V /
 |___/ \___/ \___|_|_\___|____/_/ \_\_|
"""
