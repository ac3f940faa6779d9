# -*- coding: utf-8 -*-
"""Per-page behaviour: display content, selectable items, legal actions
and input validation.

Handlers are registered by page tag with :func:`register_page`. The
navigation stack only ever holds plain :class:`~epicvault.nav.Page`
values; everything screen-specific is looked up here.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

import qrcode

from .errors import ValidationError
from .models import Document, Status
from .nav import (
    AccountSettings,
    Confirmation,
    Dashboard,
    EpicDetails,
    EpicList,
    Login,
    Page,
    Register,
    StoryDetails,
    StoryList,
    TotpSetup,
)

# ---------------------------------------------------------------------
# Actions and their inputs
# ---------------------------------------------------------------------

STATUS_CHOICES = tuple(s.value for s in Status)


@dataclass(frozen=True)
class Field:
    name: str
    label: str
    required: bool = True
    secret: bool = False
    choices: Tuple[str, ...] = ()
    # Blank input clears the value instead of leaving it unchanged.
    clearable: bool = False


@dataclass(frozen=True)
class ActionSpec:
    name: str
    label: str
    fields: Tuple[Field, ...] = ()


def _spec(name: str, label: str, *fields: Field) -> ActionSpec:
    return ActionSpec(name, label, tuple(fields))


_TITLE = Field("title", "Title")
_DESCRIPTION = Field("description", "Description", required=False)
_EDIT_TITLE = Field("title", "Title", required=False)
_EDIT_DESCRIPTION = Field("description", "Description", required=False, clearable=True)
_EDIT_STATUS = Field("status", "Status", required=False, choices=STATUS_CHOICES)
_CODE = Field("code", "One-time code")

ACTIONS: Dict[str, ActionSpec] = {
    spec.name: spec
    for spec in (
        _spec("go_register", "Register"),
        _spec(
            "register",
            "Create account",
            Field("username", "Username"),
            Field("password", "Password", secret=True),
            Field("confirm", "Confirm password", secret=True),
        ),
        _spec(
            "login",
            "Log in",
            Field("username", "Username"),
            Field("password", "Password", secret=True),
            Field("code", "One-time code (if enabled)", required=False),
        ),
        _spec("logout", "Log out"),
        _spec("back", "Back"),
        _spec("home", "Dashboard"),
        _spec("list_epics", "Epics"),
        _spec("open_epic", "Open epic", Field("epic_id", "Epic")),
        _spec("create_epic", "New epic", _TITLE, _DESCRIPTION),
        _spec("update_epic", "Edit epic", _EDIT_TITLE, _EDIT_DESCRIPTION, _EDIT_STATUS),
        _spec("delete_epic", "Delete epic"),
        _spec("list_stories", "Stories"),
        _spec("create_story", "New story", _TITLE, _DESCRIPTION),
        _spec("open_story", "Open story", Field("story_id", "Story")),
        _spec("update_story", "Edit story", _EDIT_TITLE, _EDIT_DESCRIPTION, _EDIT_STATUS),
        _spec("delete_story", "Delete story"),
        _spec("confirm", "Confirm"),
        _spec("cancel", "Cancel"),
        _spec("account", "Account"),
        _spec(
            "change_password",
            "Change password",
            Field("current", "Current password", secret=True),
            Field("password", "New password", secret=True),
            Field("confirm", "Confirm new password", secret=True),
        ),
        _spec("change_username", "Change username", Field("username", "New username")),
        _spec("enable_totp", "Enable 2FA"),
        _spec("confirm_totp", "Confirm 2FA", _CODE),
        _spec("disable_totp", "Disable 2FA", _CODE),
        _spec(
            "export",
            "Export",
            Field("path", "Target file"),
            Field("secret", "Export password (blank for plain JSON)", required=False, secret=True),
        ),
        _spec("delete_account", "Delete account", Field("password", "Password", secret=True)),
    )
}


def validate_params(action: str, params: Optional[Mapping[str, object]]) -> Dict[str, str]:
    """Normalise raw input for *action*; raise ValidationError if malformed.

    Non-secret values are stripped. Optional fields left blank are dropped
    so callers can treat a missing key as "unchanged", except clearable
    fields, which keep an empty string when the key was supplied.
    """
    spec = ACTIONS.get(action)
    if spec is None:
        raise ValidationError(f"Unknown action: {action}")
    raw = dict(params or {})
    clean: Dict[str, str] = {}
    for fld in spec.fields:
        value = raw.get(fld.name)
        text = "" if value is None else str(value)
        if not fld.secret:
            text = text.strip()
        if not text:
            if fld.required:
                raise ValidationError(f"{fld.label} required")
            if fld.clearable and value is not None:
                clean[fld.name] = ""
            continue
        if fld.choices:
            text = Status.parse(text).value
        clean[fld.name] = text
    return clean


# ---------------------------------------------------------------------
# Render context
# ---------------------------------------------------------------------

@dataclass
class PageView:
    """What a handler may look at. Never holds secrets."""

    document: Optional[Document] = None
    accounts: Sequence[Tuple[str, str]] = ()
    depth: int = 1
    totp_uri: Optional[str] = None


# ---------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------

class PageHandler:
    """Default behaviour shared by authenticated screens."""

    title = "EpicVault"

    def render(self, page: Page, view: PageView) -> List[str]:
        return []

    def items(self, page: Page, view: PageView) -> List[Tuple[str, str]]:
        """Selectable rows as ``(id, label)``."""
        return []

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        return []

    def actions(self, page: Page, view: PageView) -> List[str]:
        out = list(self.own_actions(page, view))
        if view.depth > 1:
            out.append("back")
        if page.requires_auth:
            if not isinstance(page, Dashboard):
                out.append("home")
            out.append("logout")
        return out


H = TypeVar("H", bound=PageHandler)

_HANDLERS: Dict[str, PageHandler] = {}


def register_page(page_type: Type[Page]) -> Callable[[Type[H]], Type[H]]:
    """Class decorator: register a handler for *page_type*."""

    def decorator(cls: Type[H]) -> Type[H]:
        _HANDLERS[page_type.tag] = cls()
        return cls

    return decorator


def handler_for(page: Page) -> PageHandler:
    try:
        return _HANDLERS[page.tag]
    except KeyError:
        raise LookupError(f"No handler registered for page {page.tag!r}") from None


def render(page: Page, view: PageView) -> List[str]:
    return handler_for(page).render(page, view)


def items(page: Page, view: PageView) -> List[Tuple[str, str]]:
    return handler_for(page).items(page, view)


def legal_actions(page: Page, view: PageView) -> List[str]:
    return handler_for(page).actions(page, view)


def page_title(page: Page) -> str:
    return handler_for(page).title


_HALF_BLOCKS = {
    (True, True): "\u2588",
    (True, False): "\u2580",
    (False, True): "\u2584",
    (False, False): " ",
}


def qr_lines(data: str) -> List[str]:
    """Render *data* as a QR code in half-block characters, two modules per line.

    Light modules are drawn and dark ones left blank, so the code scans on a
    dark terminal background.
    """
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_L, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    rows = [[not dark for dark in row] for row in qr.get_matrix()]
    if len(rows) % 2:
        rows.append([False] * len(rows[0]))
    return [
        "".join(_HALF_BLOCKS[top, bottom] for top, bottom in zip(upper, lower))
        for upper, lower in zip(rows[0::2], rows[1::2])
    ]


def _status_counts(statuses: Sequence[Status]) -> str:
    return ", ".join(f"{s.value}: {sum(1 for x in statuses if x is s)}" for s in Status)


# ---------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------

@register_page(Login)
class LoginHandler(PageHandler):
    title = "Login"

    def render(self, page: Page, view: PageView) -> List[str]:
        if not view.accounts:
            return ["No accounts found. Register to begin."]
        return ["Accounts on this device:"] + [f"  {name}" for _, name in view.accounts]

    def items(self, page: Page, view: PageView) -> List[Tuple[str, str]]:
        return [(name, name) for _, name in view.accounts]

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        return ["login", "go_register"]


@register_page(Register)
class RegisterHandler(PageHandler):
    title = "Register"

    def render(self, page: Page, view: PageView) -> List[str]:
        return ["Choose a username and password. The password cannot be recovered."]

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        return ["register"]


@register_page(Dashboard)
class DashboardHandler(PageHandler):
    title = "Dashboard"

    def render(self, page: Page, view: PageView) -> List[str]:
        doc = view.document
        if doc is None:
            return []
        return [
            f"Logged in as {doc.account.username}",
            f"Epics: {len(doc.epics)} ({_status_counts([e.status for e in doc.epics.values()])})",
            f"Stories: {len(doc.stories)} ({_status_counts([s.status for s in doc.stories.values()])})",
        ]

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        return ["list_epics", "account"]


@register_page(EpicList)
class EpicListHandler(PageHandler):
    title = "Epics"

    def items(self, page: Page, view: PageView) -> List[Tuple[str, str]]:
        doc = view.document
        if doc is None:
            return []
        return [
            (epic.id, f"[{epic.status.value}] {epic.title} ({len(epic.story_ids)} stories)")
            for epic in doc.epics.values()
        ]

    def render(self, page: Page, view: PageView) -> List[str]:
        rows = self.items(page, view)
        if not rows:
            return ["No epics yet."]
        return [label for _, label in rows]

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        out = ["create_epic"]
        if view.document is None or view.document.epics:
            out.insert(0, "open_epic")
        return out


@register_page(EpicDetails)
class EpicDetailsHandler(PageHandler):
    title = "Epic"

    def render(self, page: Page, view: PageView) -> List[str]:
        if view.document is None:
            return []
        epic = view.document.get_epic(page.epic_id)
        return [
            epic.title,
            f"Status: {epic.status.value}",
            f"Stories: {len(epic.story_ids)}",
            "",
            epic.description or "(no description)",
        ]

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        return ["list_stories", "update_epic", "delete_epic"]


@register_page(StoryList)
class StoryListHandler(PageHandler):
    title = "Stories"

    def items(self, page: Page, view: PageView) -> List[Tuple[str, str]]:
        if view.document is None:
            return []
        return [
            (story.id, f"[{story.status.value}] {story.title}")
            for story in view.document.stories_of(page.epic_id)
        ]

    def render(self, page: Page, view: PageView) -> List[str]:
        if view.document is None:
            return []
        epic = view.document.get_epic(page.epic_id)
        rows = self.items(page, view)
        lines = [f"Epic: {epic.title}"]
        lines.extend(label for _, label in rows)
        if not rows:
            lines.append("No stories yet.")
        return lines

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        out = ["create_story"]
        if view.document is None or view.document.get_epic(page.epic_id).story_ids:
            out.insert(0, "open_story")
        return out


@register_page(StoryDetails)
class StoryDetailsHandler(PageHandler):
    title = "Story"

    def render(self, page: Page, view: PageView) -> List[str]:
        if view.document is None:
            return []
        story = view.document.get_story(page.story_id)
        epic = view.document.owner_of(page.story_id)
        return [
            story.title,
            f"Status: {story.status.value}",
            f"Epic: {epic.title}",
            "",
            story.description or "(no description)",
        ]

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        return ["update_story", "delete_story"]


@register_page(AccountSettings)
class AccountSettingsHandler(PageHandler):
    title = "Account"

    def render(self, page: Page, view: PageView) -> List[str]:
        if view.document is None:
            return []
        account = view.document.account
        return [
            f"Username: {account.username}",
            f"Account id: {account.id}",
            f"Two-factor: {'enabled' if account.totp_enabled else 'disabled'}",
        ]

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        out = ["change_password", "change_username"]
        if view.document is None:
            out.extend(["enable_totp", "disable_totp"])
        elif view.document.account.totp_enabled:
            out.append("disable_totp")
        else:
            out.append("enable_totp")
        out.extend(["export", "delete_account"])
        return out


@register_page(TotpSetup)
class TotpSetupHandler(PageHandler):
    title = "Two-factor setup"

    def render(self, page: Page, view: PageView) -> List[str]:
        lines = ["Scan this code with your authenticator app, then enter the current code."]
        if view.totp_uri:
            lines.append("")
            lines.extend(qr_lines(view.totp_uri))
            lines.extend(["", "Or add it manually:", view.totp_uri])
        return lines

    def own_actions(self, page: Page, view: PageView) -> List[str]:
        return ["confirm_totp"]


_CONFIRM_TEXT = {
    "delete_epic": "Delete this epic and all of its stories?",
    "delete_story": "Delete this story?",
    "delete_account": "Delete this account and all of its data? This cannot be undone.",
}


@register_page(Confirmation)
class ConfirmationHandler(PageHandler):
    title = "Confirm"

    def render(self, page: Page, view: PageView) -> List[str]:
        return [_CONFIRM_TEXT.get(page.pending, "Are you sure?")]

    def actions(self, page: Page, view: PageView) -> List[str]:
        return ["confirm", "cancel"]
