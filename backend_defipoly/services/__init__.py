"""
Read-side services over the action log.
"""

from backend_defipoly.services.cooldowns import BuyCooldown, CooldownService, StealCooldown

__all__ = ["BuyCooldown", "CooldownService", "StealCooldown"]
