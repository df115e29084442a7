# Admin routes package
from .campaigns import campaigns_router
from .content import content_router
from .sms import sms_router
from .tiers import tiers_router
from .users import users_router

__all__ = [
    "campaigns_router",
    "content_router",
    "sms_router",
    "tiers_router",
    "users_router",
]
