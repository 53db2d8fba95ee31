"""
relaybot - Telegram media assistant
"""

__version__ = "0.1.0"
__logo__ = "📡"
