"""
bot/ — Bot composition root and action registry.
"""

from bot.actions import ActionRegistry, ActionSchema
from bot.bot import Bot

__all__ = ["ActionRegistry", "ActionSchema", "Bot"]
