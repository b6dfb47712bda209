"""
Wiki ↔ Chat Subscription Bridge

Lets chat channels subscribe to wiki space events and manage those
subscriptions through slash commands.
"""

__version__ = "0.1.0"
