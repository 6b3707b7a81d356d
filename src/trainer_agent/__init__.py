"""
Trainer-Agent: tool-calling agent runtime for a personal trainer app.
"""

__version__ = "0.1.0"
