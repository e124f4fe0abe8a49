"""
session.py — the current signed-in user, broadcast to whoever cares.

One SessionHolder per front-end session (the whole process for a desktop
UI, one per chat in the Telegram bot). Components never store the user
themselves; they subscribe and react (a Workspace releases the camera and
drops its image on sign-out).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    uid: str
    display_name: str = ""


Listener = Callable[[Optional[User]], None]


class SessionHolder:

    def __init__(self) -> None:
        self._user: Optional[User] = None
        self._listeners: list[Listener] = []

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register listener and call it once with the current user. Returns an unsubscribe function."""
        self._listeners.append(listener)
        listener(self._user)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def sign_in(self, user: User) -> None:
        if user == self._user:
            return
        self._user = user
        logger.info("Signed in: %s", user.uid)
        self._notify()

    def sign_out(self) -> None:
        if self._user is None:
            return
        logger.info("Signed out: %s", self._user.uid)
        self._user = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._user)
            except Exception as exc:
                logger.error("Session listener %r failed: %s", listener, exc, exc_info=True)
