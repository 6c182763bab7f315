"""
VeilBatch: windowed batch settlement of exchange intents.
"""

__version__ = "0.1.0"
