# -*- coding: utf-8 -*-
"""Screen states (Pages) and the navigation stack.

Pages are small frozen dataclasses that carry only the ids a screen
needs. Behaviour for each page lives in :mod:`epicvault.pages`, keyed by
the page's ``tag``; adding a screen means adding a subclass here and a
handler there, without touching existing ones.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Iterator, List, Optional, Tuple, Type
import logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Page:
    tag: ClassVar[str] = "page"
    requires_auth: ClassVar[bool] = True


@dataclass(frozen=True)
class Login(Page):
    tag: ClassVar[str] = "login"
    requires_auth: ClassVar[bool] = False


@dataclass(frozen=True)
class Register(Page):
    tag: ClassVar[str] = "register"
    requires_auth: ClassVar[bool] = False


@dataclass(frozen=True)
class Dashboard(Page):
    tag: ClassVar[str] = "dashboard"


@dataclass(frozen=True)
class EpicList(Page):
    tag: ClassVar[str] = "epic_list"


@dataclass(frozen=True)
class EpicDetails(Page):
    tag: ClassVar[str] = "epic_details"
    epic_id: str = ""


@dataclass(frozen=True)
class StoryList(Page):
    tag: ClassVar[str] = "story_list"
    epic_id: str = ""


@dataclass(frozen=True)
class StoryDetails(Page):
    tag: ClassVar[str] = "story_details"
    story_id: str = ""


@dataclass(frozen=True)
class AccountSettings(Page):
    tag: ClassVar[str] = "account_settings"


@dataclass(frozen=True)
class TotpSetup(Page):
    """The candidate secret itself lives on the Session, never on the stack."""

    tag: ClassVar[str] = "totp_setup"


@dataclass(frozen=True)
class Confirmation(Page):
    """Asks before a destructive operation named by *pending*."""

    tag: ClassVar[str] = "confirmation"
    pending: str = ""
    target_id: Optional[str] = None


# ---------------------------------------------------------------------
# Stack
# ---------------------------------------------------------------------

class NavigationStack:
    """LIFO history of Pages; the top is the current screen.

    ``pop`` never removes the last page: with a single element it is a
    no-op that returns the current page.
    """

    def __init__(self, pages: Optional[List[Page]] = None) -> None:
        self._pages: List[Page] = list(pages or [])

    def __len__(self) -> int:
        return len(self._pages)

    def __iter__(self) -> Iterator[Page]:
        return iter(self._pages)

    def __repr__(self) -> str:
        return f"NavigationStack({[p.tag for p in self._pages]})"

    @property
    def pages(self) -> Tuple[Page, ...]:
        return tuple(self._pages)

    def current(self) -> Page:
        if not self._pages:
            raise LookupError("navigation stack is empty")
        return self._pages[-1]

    def push(self, page: Page) -> Page:
        self._pages.append(page)
        logger.debug("nav push %s depth=%d", page.tag, len(self._pages))
        return page

    def pop(self) -> Page:
        """Remove the top page and return the new current one."""
        if not self._pages:
            raise LookupError("navigation stack is empty")
        if len(self._pages) > 1:
            popped = self._pages.pop()
            logger.debug("nav pop %s depth=%d", popped.tag, len(self._pages))
        return self._pages[-1]

    def pop_to(self, page_type: Type[Page]) -> bool:
        """Pop until the top is a *page_type*; return False (unchanged) if none is below."""
        for index in range(len(self._pages) - 1, -1, -1):
            if isinstance(self._pages[index], page_type):
                del self._pages[index + 1:]
                return True
        return False

    def clear_to(self, page: Page) -> Page:
        """Drop all history so that *page* is the only element."""
        self._pages = [page]
        logger.debug("nav clear_to %s", page.tag)
        return page

    def clear(self) -> None:
        """Empty the stack (session teardown)."""
        self._pages = []
