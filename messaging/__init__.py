"""
Messaging System - Topic Relay Pipeline

Bridges private chats with end-users and per-user threads in a staff
workspace chat.

Components:
- MessageIntake: Normalizes incoming updates
- ThreadDirectory: User ↔ thread mapping with reverse index
- MediaAggregator: Coalesces album items into single deliveries
- TimingController: Quiet-period watchdogs and shutdown draining
- VerificationGate: Human verification hook
- RelayRouter: Main orchestrator

Usage:
    from messaging import build_router

    router = build_router(settings, store, gateway)
    await router.handle_update(update)
"""

from messaging.router import RelayRouter, build_router

__all__ = ['RelayRouter', 'build_router']
__version__ = '1.0.0'
