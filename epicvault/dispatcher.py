# -*- coding: utf-8 -*-
"""Action dispatcher: the navigation/action state machine.

Every user action is a pair of effects: at most one store operation and
one navigation change. The dispatcher runs the store operation first,
then builds the new stack and the view for its top page on a *copy*, and
only then commits both to the :class:`Session`. If anything fails before
the commit, the session's stack is left exactly as it was and the error
is returned in the :class:`Outcome`.

Wrong credentials are the exception to "stay where you are": they end the
session and return to the login page.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple
import logging

from . import logic
from . import pages as page_table
from .crypto import SecretBytes, totp_provisioning_uri
from .errors import EpicVaultError, ValidationError, WrongCredentialsError
from .models import Document
from .nav import (
    AccountSettings,
    Confirmation,
    Dashboard,
    EpicDetails,
    EpicList,
    Login,
    NavigationStack,
    Page,
    Register,
    StoryDetails,
    StoryList,
    TotpSetup,
)
from .pages import PageView
from .store import DocumentStore

logger = logging.getLogger(__name__)

# Wrong codes on these only mean "try again"; everywhere else a credential
# mismatch ends the session.
_RETRYABLE_CREDENTIAL_ACTIONS = frozenset({"confirm_totp", "disable_totp"})


# ---------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------

@dataclass
class Session:
    """Per-process state for the logged-in user.

    The password is kept as a wipeable buffer because every action
    re-derives the document key from it; derived keys themselves are never
    kept. Nothing secret is ever placed on the navigation stack.
    """

    stack: NavigationStack = field(default_factory=lambda: NavigationStack([Login()]))
    account_id: Optional[str] = None
    secret: Optional[SecretBytes] = field(default=None, repr=False)
    pending_totp: Optional[SecretBytes] = field(default=None, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.account_id is not None and self.secret is not None and not self.secret.wiped

    def init(self, account_id: str, password: str) -> None:
        """Start a session after login or registration."""
        self.teardown()
        self.account_id = account_id
        self.secret = SecretBytes(password)
        self.stack.clear_to(Dashboard())

    def teardown(self) -> None:
        """Wipe secrets and reset the stack to the login page."""
        if self.secret is not None:
            self.secret.wipe()
        self.clear_pending_totp()
        self.secret = None
        self.account_id = None
        self.stack.clear()
        self.stack.push(Login())

    def replace_secret(self, password: str) -> None:
        if self.secret is not None:
            self.secret.wipe()
        self.secret = SecretBytes(password)

    def set_pending_totp(self, totp_secret: str) -> None:
        self.clear_pending_totp()
        self.pending_totp = SecretBytes(totp_secret)

    def clear_pending_totp(self) -> None:
        if self.pending_totp is not None:
            self.pending_totp.wipe()
        self.pending_totp = None

    def credentials(self) -> Tuple[str, bytearray]:
        """Return ``(account_id, password buffer)``; fails closed if logged out."""
        if not self.authenticated:
            raise WrongCredentialsError()
        return self.account_id, self.secret.value  # type: ignore[return-value,union-attr]


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

NavOp = Callable[[NavigationStack], None]
SessionOp = Callable[[Session], None]


def _stay(stack: NavigationStack) -> None:
    return None


@dataclass
class Transition:
    """What an action wants to happen once its store effect succeeded."""

    nav: NavOp = _stay
    session_op: Optional[SessionOp] = None
    document: Optional[Document] = None
    message: Optional[str] = None
    totp_uri: Optional[str] = None


@dataclass
class Outcome:
    """Returned to the rendering layer after every action."""

    page: Page
    actions: List[str]
    view: PageView
    error: Optional[EpicVaultError] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def title(self) -> str:
        return page_table.page_title(self.page)

    @property
    def lines(self) -> List[str]:
        return page_table.render(self.page, self.view)

    @property
    def items(self) -> List[Tuple[str, str]]:
        return page_table.items(self.page, self.view)


# ---------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------

class ActionDispatcher:
    """Maps actions to a store operation plus a navigation change."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._handlers: Dict[str, Callable[[Session, Page, Dict[str, str]], Transition]] = {
            name: getattr(self, f"_do_{name}") for name in page_table.ACTIONS
        }

    # ---- public API ----

    def start(self, session: Session) -> Outcome:
        """Describe the current page without performing any action."""
        try:
            page = session.stack.current()
            view = self._build_view(session, page, session.stack, None)
        except EpicVaultError as exc:
            if isinstance(exc, WrongCredentialsError):
                session.teardown()
            page = session.stack.current()
            return Outcome(page, self._actions(page, session.stack), PageView(depth=len(session.stack)), exc)
        return Outcome(page, page_table.legal_actions(page, view), view)

    def dispatch(
        self,
        session: Session,
        action: str,
        params: Optional[Mapping[str, object]] = None,
    ) -> Outcome:
        """Run *action* against *session*; never raises EpicVaultError."""
        page = session.stack.current()
        try:
            if action not in self._actions(page, session.stack):
                raise ValidationError(f"Action {action!r} is not available on {page_table.page_title(page)}")
            if page.requires_auth and not session.authenticated:
                raise WrongCredentialsError()
            clean = page_table.validate_params(action, params)
            transition = self._handlers[action](session, page, clean)

            new_stack = NavigationStack(list(session.stack.pages))
            transition.nav(new_stack)
            new_page = new_stack.current()
            scratch = Session(new_stack, session.account_id, session.secret, session.pending_totp)
            view = self._build_view(scratch, new_page, new_stack, transition.document)
            if transition.totp_uri and isinstance(new_page, TotpSetup):
                view.totp_uri = transition.totp_uri
        except WrongCredentialsError as exc:
            if action in _RETRYABLE_CREDENTIAL_ACTIONS and session.authenticated:
                return self._failed(session, exc)
            logger.warning("Credential failure on %s; ending session", action)
            session.teardown()
            return self._failed(session, exc)
        except EpicVaultError as exc:
            logger.info("Action %s failed: %s", action, exc.kind)
            return self._failed(session, exc)

        if transition.session_op is not None:
            transition.session_op(session)
        session.stack = new_stack
        logger.debug("Action %s -> %s depth=%d", action, new_page.tag, len(new_stack))
        return Outcome(
            new_page,
            page_table.legal_actions(new_page, view),
            view,
            message=transition.message,
        )

    # ---- helpers ----

    @staticmethod
    def _actions(page: Page, stack: NavigationStack) -> List[str]:
        """Everything a page could ever offer (independent of document contents)."""
        return page_table.legal_actions(page, PageView(depth=len(stack)))

    def _failed(self, session: Session, error: EpicVaultError) -> Outcome:
        page = session.stack.current()
        try:
            view = self._build_view(session, page, session.stack, None)
            actions = page_table.legal_actions(page, view)
        except EpicVaultError:
            view = PageView(depth=len(session.stack))
            actions = self._actions(page, session.stack)
        return Outcome(page, actions, view, error=error)

    def _build_view(
        self,
        session: Session,
        page: Page,
        stack: NavigationStack,
        document: Optional[Document],
    ) -> PageView:
        view = PageView(depth=len(stack))
        if isinstance(page, Login):
            view.accounts = self.store.list_accounts()
            return view
        if not page.requires_auth:
            return view
        if document is None:
            account_id, secret = session.credentials()
            document = self.store.read(account_id, secret)
        view.document = document
        if isinstance(page, TotpSetup) and session.pending_totp is not None:
            view.totp_uri = totp_provisioning_uri(
                session.pending_totp.value.decode("ascii"), document.account.username
            )
        # Rendering resolves the page's ids; a missing epic/story surfaces
        # here as NotFoundError before anything is committed.
        page_table.render(page, view)
        return view

    # ---- system / account actions ----

    def _do_go_register(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        return Transition(nav=lambda s: s.push(Register()))

    def _do_register(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        password = p["password"]
        document = logic.register_user(self.store, p["username"], password, p["confirm"])
        account_id = document.account.id
        return Transition(
            nav=lambda s: s.clear_to(Dashboard()),
            session_op=lambda sess: sess.init(account_id, password),
            document=document,
            message="Account created.",
        )

    def _do_login(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        password = p["password"]
        document = logic.login_user(self.store, p["username"], password, p.get("code"))
        account_id = document.account.id
        return Transition(
            nav=lambda s: s.clear_to(Dashboard()),
            session_op=lambda sess: sess.init(account_id, password),
            document=document,
        )

    def _do_logout(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        return Transition(nav=lambda s: s.clear_to(Login()), session_op=Session.teardown)

    def _do_back(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        return Transition(nav=lambda s: s.pop(), session_op=Session.clear_pending_totp)

    def _do_home(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        return Transition(nav=lambda s: s.clear_to(Dashboard()), session_op=Session.clear_pending_totp)

    def _do_account(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        return Transition(nav=lambda s: s.push(AccountSettings()))

    def _do_change_password(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, _ = session.credentials()
        new_password = p["password"]
        document = logic.change_password(self.store, account_id, p["current"], new_password, p["confirm"])
        return Transition(
            session_op=lambda sess: sess.replace_secret(new_password),
            document=document,
            message="Password changed.",
        )

    def _do_change_username(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document = logic.change_username(self.store, account_id, secret, p["username"])
        return Transition(document=document, message="Username changed.")

    def _do_enable_totp(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        totp_secret, uri = logic.begin_totp(self.store, account_id, secret)
        return Transition(
            nav=lambda s: s.push(TotpSetup()),
            session_op=lambda sess: sess.set_pending_totp(totp_secret),
            totp_uri=uri,
        )

    def _do_confirm_totp(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        if session.pending_totp is None:
            raise ValidationError("Start two-factor setup first")
        totp_secret = session.pending_totp.value.decode("ascii")
        document = logic.confirm_totp(self.store, account_id, secret, totp_secret, p["code"])
        return Transition(
            nav=lambda s: s.pop(),
            session_op=Session.clear_pending_totp,
            document=document,
            message="Two-factor authentication enabled.",
        )

    def _do_disable_totp(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document = logic.disable_totp(self.store, account_id, secret, p["code"])
        return Transition(document=document, message="Two-factor authentication disabled.")

    def _do_export(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        target = logic.export_document(self.store, account_id, secret, p["path"], p.get("secret"))
        return Transition(message=f"Exported to {target}")

    def _do_delete_account(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, _ = session.credentials()
        document = logic.verify_credentials(self.store, account_id, p["password"])
        return Transition(
            nav=lambda s: s.push(Confirmation(pending="delete_account", target_id=account_id)),
            document=document,
        )

    # ---- epics and stories ----

    def _do_list_epics(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        return Transition(nav=lambda s: s.push(EpicList()))

    def _do_open_epic(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document = self.store.read(account_id, secret)
        epic = document.get_epic(p["epic_id"])
        return Transition(nav=lambda s: s.push(EpicDetails(epic_id=epic.id)), document=document)

    def _do_create_epic(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document, epic = logic.create_epic(
            self.store, account_id, secret, p["title"], p.get("description", "")
        )
        return Transition(document=document, message=f"Created epic {epic.title!r}.")

    def _do_update_epic(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document, _ = logic.update_epic(
            self.store,
            account_id,
            secret,
            page.epic_id,  # type: ignore[attr-defined]
            title=p.get("title"),
            description=p.get("description"),
            status=p.get("status"),
        )
        return Transition(document=document, message="Epic updated.")

    def _do_delete_epic(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        epic_id = page.epic_id  # type: ignore[attr-defined]
        return Transition(nav=lambda s: s.push(Confirmation(pending="delete_epic", target_id=epic_id)))

    def _do_list_stories(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        epic_id = page.epic_id  # type: ignore[attr-defined]
        return Transition(nav=lambda s: s.push(StoryList(epic_id=epic_id)))

    def _do_create_story(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document, story = logic.create_story(
            self.store,
            account_id,
            secret,
            page.epic_id,  # type: ignore[attr-defined]
            p["title"],
            p.get("description", ""),
        )
        return Transition(document=document, message=f"Created story {story.title!r}.")

    def _do_open_story(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document = self.store.read(account_id, secret)
        story = document.get_story(p["story_id"])
        if document.owner_of(story.id).id != page.epic_id:  # type: ignore[attr-defined]
            raise ValidationError("Story does not belong to this epic")
        return Transition(nav=lambda s: s.push(StoryDetails(story_id=story.id)), document=document)

    def _do_update_story(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        account_id, secret = session.credentials()
        document, _ = logic.update_story(
            self.store,
            account_id,
            secret,
            page.story_id,  # type: ignore[attr-defined]
            title=p.get("title"),
            description=p.get("description"),
            status=p.get("status"),
        )
        return Transition(document=document, message="Story updated.")

    def _do_delete_story(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        story_id = page.story_id  # type: ignore[attr-defined]
        return Transition(nav=lambda s: s.push(Confirmation(pending="delete_story", target_id=story_id)))

    # ---- confirmation ----

    def _do_confirm(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        if not isinstance(page, Confirmation):
            raise ValidationError("Nothing to confirm")
        account_id, secret = session.credentials()
        if page.pending == "delete_epic":
            document = logic.delete_epic(self.store, account_id, secret, page.target_id or "")
            return Transition(
                nav=lambda s: _return_to(s, EpicList),
                document=document,
                message="Epic deleted.",
            )
        if page.pending == "delete_story":
            document = logic.delete_story(self.store, account_id, secret, page.target_id or "")
            return Transition(
                nav=lambda s: _return_to(s, StoryList),
                document=document,
                message="Story deleted.",
            )
        if page.pending == "delete_account":
            logic.delete_account(self.store, account_id)
            return Transition(
                nav=lambda s: s.clear_to(Login()),
                session_op=Session.teardown,
                message="Account deleted.",
            )
        raise ValidationError(f"Nothing to confirm: {page.pending!r}")

    def _do_cancel(self, session: Session, page: Page, p: Dict[str, str]) -> Transition:
        return Transition(nav=lambda s: s.pop())


def _return_to(stack: NavigationStack, page_type: type) -> None:
    """Pop back to the nearest *page_type*; fall back to the dashboard."""
    if not stack.pop_to(page_type):
        stack.clear_to(Dashboard())
