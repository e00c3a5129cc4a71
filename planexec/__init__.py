"""
planexec - Durable, resumable execution of pre-authored plans.
"""

__version__ = "0.1.0"
