"""
spamguard: batched AI spam classification for Telegram group chats.
"""

__version__ = "0.1.0"
