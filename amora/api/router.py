"""
Amora — Main API Router

Aggregates all sub-routers under a single prefix so that ``amora.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from amora.api import auth, chats, feeds, matches, swipes, users

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(swipes.router, prefix="/swipes", tags=["Swipes"])
router.include_router(matches.router, prefix="/matches", tags=["Matches"])
router.include_router(chats.router, prefix="/chats", tags=["Chats"])
router.include_router(feeds.router, prefix="/ws", tags=["Live feeds"])
