# tests/test_dispatcher.py

from __future__ import annotations

from pathlib import Path
import json

import pytest

from epicvault import fileio
from epicvault import store as store_mod
from epicvault.crypto import totp_code
from epicvault.dispatcher import ActionDispatcher, Outcome, Session
from epicvault.errors import (
    NotFoundError,
    PersistenceError,
    ValidationError,
    WrongCredentialsError,
)
from epicvault.models import Document, Status
from epicvault.nav import (
    AccountSettings,
    Confirmation,
    Dashboard,
    EpicDetails,
    EpicList,
    Login,
    NavigationStack,
    Register,
    StoryDetails,
    StoryList,
    TotpSetup,
)
from epicvault.pages import qr_lines
from epicvault.store import DocumentStore


def _register(dispatcher: ActionDispatcher, session: Session, name: str = "alice", pw: str = "pw1") -> Outcome:
    dispatcher.dispatch(session, "go_register")
    return dispatcher.dispatch(
        session, "register", {"username": name, "password": pw, "confirm": pw}
    )


def _tags(session: Session) -> list:
    return [page.tag for page in session.stack]


@pytest.fixture()
def logged_in(dispatcher: ActionDispatcher, session: Session) -> Session:
    outcome = _register(dispatcher, session)
    assert outcome.ok, outcome.error
    return session


# ---------------------------------------------------------------------
# Login / register
# ---------------------------------------------------------------------

def test_start_shows_login_with_known_accounts(
    dispatcher: ActionDispatcher, session: Session, registered: Document
) -> None:
    outcome = dispatcher.start(session)

    assert outcome.page == Login()
    assert outcome.items == [("alice", "alice")]
    assert outcome.actions == ["login", "go_register"]


def test_register_lands_on_dashboard(dispatcher: ActionDispatcher, session: Session) -> None:
    outcome = dispatcher.dispatch(session, "go_register")
    assert outcome.page == Register()
    assert session.stack.pages == (Login(), Register())

    outcome = dispatcher.dispatch(
        session, "register", {"username": "alice", "password": "pw1", "confirm": "pw1"}
    )

    assert outcome.ok
    assert outcome.page == Dashboard()
    assert session.stack.pages == (Dashboard(),)
    assert session.authenticated
    assert "Logged in as alice" in outcome.lines
    assert "back" not in outcome.actions


def test_register_mismatch_stays_on_register(
    dispatcher: ActionDispatcher, session: Session, store: DocumentStore
) -> None:
    dispatcher.dispatch(session, "go_register")

    outcome = dispatcher.dispatch(
        session, "register", {"username": "alice", "password": "a", "confirm": "b"}
    )

    assert isinstance(outcome.error, ValidationError)
    assert session.stack.pages == (Login(), Register())
    assert store.list_accounts() == []


def test_register_duplicate_username(
    dispatcher: ActionDispatcher, session: Session, registered: Document
) -> None:
    dispatcher.dispatch(session, "go_register")
    outcome = dispatcher.dispatch(
        session, "register", {"username": "alice", "password": "x", "confirm": "x"}
    )

    assert outcome.error is not None and outcome.error.kind == "already_exists"
    assert session.stack.pages == (Login(), Register())
    assert not session.authenticated


def test_login_success_and_failure(
    dispatcher: ActionDispatcher, session: Session, registered: Document
) -> None:
    outcome = dispatcher.dispatch(session, "login", {"username": "alice", "password": "nope"})
    assert isinstance(outcome.error, WrongCredentialsError)
    assert session.stack.pages == (Login(),)
    assert not session.authenticated

    outcome = dispatcher.dispatch(session, "login", {"username": "alice", "password": "pw1"})
    assert outcome.ok
    assert session.stack.pages == (Dashboard(),)
    assert session.account_id == registered.account.id


def test_logout_wipes_secret(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    secret = logged_in.secret
    assert secret is not None

    outcome = dispatcher.dispatch(logged_in, "logout")

    assert outcome.page == Login()
    assert logged_in.stack.pages == (Login(),)
    assert secret.wiped
    assert logged_in.secret is None
    assert not logged_in.authenticated


def test_authenticated_page_without_session_returns_to_login(dispatcher: ActionDispatcher) -> None:
    session = Session(stack=NavigationStack([Dashboard()]))

    outcome = dispatcher.dispatch(session, "list_epics")

    assert isinstance(outcome.error, WrongCredentialsError)
    assert session.stack.pages == (Login(),)


# ---------------------------------------------------------------------
# Legality and validation
# ---------------------------------------------------------------------

def test_illegal_action_leaves_stack_unchanged(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    before = logged_in.stack.pages

    outcome = dispatcher.dispatch(logged_in, "create_story", {"title": "x"})

    assert isinstance(outcome.error, ValidationError)
    assert logged_in.stack.pages == before
    assert outcome.page == Dashboard()


def test_back_on_single_page_is_not_offered(dispatcher: ActionDispatcher, session: Session) -> None:
    outcome = dispatcher.dispatch(session, "back")

    assert isinstance(outcome.error, ValidationError)
    assert session.stack.pages == (Login(),)


def test_validation_happens_before_the_store(
    dispatcher: ActionDispatcher, logged_in: Session, store: DocumentStore
) -> None:
    dispatcher.dispatch(logged_in, "list_epics")
    path = store.path_for(logged_in.account_id)
    before = path.read_bytes()

    outcome = dispatcher.dispatch(logged_in, "create_epic", {"title": "   "})

    assert isinstance(outcome.error, ValidationError)
    assert path.read_bytes() == before
    assert logged_in.stack.pages == (Dashboard(), EpicList())


def test_invalid_status_is_rejected(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    dispatcher.dispatch(logged_in, "list_epics")
    dispatcher.dispatch(logged_in, "create_epic", {"title": "Epic A"})
    (epic_id, _), = dispatcher.start(logged_in).items
    dispatcher.dispatch(logged_in, "open_epic", {"epic_id": epic_id})

    outcome = dispatcher.dispatch(logged_in, "update_epic", {"status": "Done"})

    assert isinstance(outcome.error, ValidationError)
    assert logged_in.stack.current() == EpicDetails(epic_id)


def test_store_failure_keeps_stack(
    dispatcher: ActionDispatcher, logged_in: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    dispatcher.dispatch(logged_in, "list_epics")
    before = logged_in.stack.pages

    def broken(path, data):
        raise OSError(5, "Input/output error")

    monkeypatch.setattr(fileio, "atomic_write", broken)
    outcome = dispatcher.dispatch(logged_in, "create_epic", {"title": "Epic A"})

    assert isinstance(outcome.error, PersistenceError)
    assert logged_in.stack.pages == before
    assert outcome.items == []


def test_open_missing_epic_is_not_found(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    dispatcher.dispatch(logged_in, "list_epics")

    outcome = dispatcher.dispatch(logged_in, "open_epic", {"epic_id": "nope"})

    assert isinstance(outcome.error, NotFoundError)
    assert logged_in.stack.pages == (Dashboard(), EpicList())


# ---------------------------------------------------------------------
# Epics and stories
# ---------------------------------------------------------------------

def test_epic_and_story_navigation(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    outcome = dispatcher.dispatch(logged_in, "list_epics")
    assert outcome.lines == ["No epics yet."]
    assert "open_epic" not in outcome.actions

    outcome = dispatcher.dispatch(logged_in, "create_epic", {"title": "Epic A", "description": "d"})
    assert outcome.page == EpicList()
    (epic_id, label), = outcome.items
    assert label == "[Open] Epic A (0 stories)"

    outcome = dispatcher.dispatch(logged_in, "open_epic", {"epic_id": epic_id})
    assert outcome.page == EpicDetails(epic_id)
    assert outcome.lines[0] == "Epic A"

    dispatcher.dispatch(logged_in, "list_stories")
    dispatcher.dispatch(logged_in, "create_story", {"title": "S1"})
    outcome = dispatcher.dispatch(logged_in, "create_story", {"title": "S2"})
    assert [label for _, label in outcome.items] == ["[Open] S1", "[Open] S2"]
    story_id = outcome.items[1][0]

    outcome = dispatcher.dispatch(logged_in, "open_story", {"story_id": story_id})
    assert outcome.page == StoryDetails(story_id)
    assert _tags(logged_in) == ["dashboard", "epic_list", "epic_details", "story_list", "story_details"]

    outcome = dispatcher.dispatch(logged_in, "update_story", {"status": "closed"})
    assert outcome.ok
    assert "Status: Closed" in outcome.lines

    outcome = dispatcher.dispatch(logged_in, "delete_story")
    assert outcome.page == Confirmation(pending="delete_story", target_id=story_id)
    assert outcome.actions == ["confirm", "cancel"]

    outcome = dispatcher.dispatch(logged_in, "confirm")
    assert outcome.page == StoryList(epic_id)
    assert [label for _, label in outcome.items] == ["[Open] S1"]
    assert _tags(logged_in) == ["dashboard", "epic_list", "epic_details", "story_list"]

    outcome = dispatcher.dispatch(logged_in, "back")
    assert outcome.page == EpicDetails(epic_id)

    dispatcher.dispatch(logged_in, "delete_epic")
    outcome = dispatcher.dispatch(logged_in, "confirm")
    assert outcome.page == EpicList()
    assert outcome.items == []
    assert logged_in.stack.pages == (Dashboard(), EpicList())

    doc = dispatcher.store.read(logged_in.account_id, "pw1")
    assert doc.epics == {} and doc.stories == {}


def test_cancel_confirmation_keeps_data(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    dispatcher.dispatch(logged_in, "list_epics")
    outcome = dispatcher.dispatch(logged_in, "create_epic", {"title": "Epic A"})
    (epic_id, _), = outcome.items
    dispatcher.dispatch(logged_in, "open_epic", {"epic_id": epic_id})
    dispatcher.dispatch(logged_in, "delete_epic")

    outcome = dispatcher.dispatch(logged_in, "cancel")

    assert outcome.page == EpicDetails(epic_id)
    assert epic_id in dispatcher.store.read(logged_in.account_id, "pw1").epics


def test_update_epic_status(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    dispatcher.dispatch(logged_in, "list_epics")
    outcome = dispatcher.dispatch(logged_in, "create_epic", {"title": "Epic A"})
    (epic_id, _), = outcome.items
    dispatcher.dispatch(logged_in, "open_epic", {"epic_id": epic_id})

    outcome = dispatcher.dispatch(logged_in, "update_epic", {"status": "InProgress", "title": ""})

    assert outcome.ok
    epic = dispatcher.store.read(logged_in.account_id, "pw1").get_epic(epic_id)
    assert epic.status is Status.IN_PROGRESS
    assert epic.title == "Epic A"


def test_home_clears_history(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    dispatcher.dispatch(logged_in, "list_epics")

    outcome = dispatcher.dispatch(logged_in, "home")

    assert outcome.page == Dashboard()
    assert logged_in.stack.pages == (Dashboard(),)


# ---------------------------------------------------------------------
# Account settings
# ---------------------------------------------------------------------

def test_change_password(dispatcher: ActionDispatcher, logged_in: Session, store: DocumentStore) -> None:
    dispatcher.dispatch(logged_in, "account")
    outcome = dispatcher.dispatch(
        logged_in, "change_password", {"current": "pw1", "password": "pw2", "confirm": "pw2"}
    )

    assert outcome.ok
    assert outcome.page == AccountSettings()
    assert bytes(logged_in.secret.value) == b"pw2"
    with pytest.raises(WrongCredentialsError):
        store.read(logged_in.account_id, "pw1")

    # The session keeps working with the new password.
    outcome = dispatcher.dispatch(logged_in, "home")
    assert outcome.ok


def test_change_password_with_wrong_current_logs_out(
    dispatcher: ActionDispatcher, logged_in: Session, store: DocumentStore
) -> None:
    account_id = logged_in.account_id
    dispatcher.dispatch(logged_in, "account")

    outcome = dispatcher.dispatch(
        logged_in, "change_password", {"current": "bad", "password": "pw2", "confirm": "pw2"}
    )

    assert isinstance(outcome.error, WrongCredentialsError)
    assert logged_in.stack.pages == (Login(),)
    assert not logged_in.authenticated
    store.read(account_id, "pw1")


def test_change_username(dispatcher: ActionDispatcher, logged_in: Session, store: DocumentStore) -> None:
    dispatcher.dispatch(logged_in, "account")

    outcome = dispatcher.dispatch(logged_in, "change_username", {"username": "alicia"})

    assert outcome.ok
    assert "Username: alicia" in outcome.lines
    assert store.find_account("alicia") == logged_in.account_id


def test_totp_setup_flow(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    dispatcher.dispatch(logged_in, "account")

    outcome = dispatcher.dispatch(logged_in, "enable_totp")
    assert outcome.page == TotpSetup()
    assert any(line.startswith("otpauth://totp/") for line in outcome.lines)
    uri = next(line for line in outcome.lines if line.startswith("otpauth://totp/"))
    block = qr_lines(uri)
    start = outcome.lines.index(block[0])
    assert outcome.lines[start:start + len(block)] == block
    assert len({len(line) for line in block}) == 1
    assert any("\u2588" in line for line in block)
    assert logged_in.pending_totp is not None
    totp_secret = bytes(logged_in.pending_totp.value).decode("ascii")

    outcome = dispatcher.dispatch(logged_in, "confirm_totp", {"code": "12345"})
    assert isinstance(outcome.error, WrongCredentialsError)
    assert logged_in.authenticated
    assert outcome.page == TotpSetup()

    outcome = dispatcher.dispatch(logged_in, "confirm_totp", {"code": totp_code(totp_secret)})
    assert outcome.ok
    assert outcome.page == AccountSettings()
    assert "Two-factor: enabled" in outcome.lines
    assert "disable_totp" in outcome.actions
    assert logged_in.pending_totp is None

    dispatcher.dispatch(logged_in, "logout")
    outcome = dispatcher.dispatch(logged_in, "login", {"username": "alice", "password": "pw1"})
    assert isinstance(outcome.error, WrongCredentialsError)
    outcome = dispatcher.dispatch(
        logged_in, "login", {"username": "alice", "password": "pw1", "code": totp_code(totp_secret)}
    )
    assert outcome.ok


def test_back_from_totp_setup_drops_candidate(dispatcher: ActionDispatcher, logged_in: Session) -> None:
    dispatcher.dispatch(logged_in, "account")
    dispatcher.dispatch(logged_in, "enable_totp")

    outcome = dispatcher.dispatch(logged_in, "back")

    assert outcome.page == AccountSettings()
    assert logged_in.pending_totp is None
    assert "Two-factor: disabled" in outcome.lines


def test_export(dispatcher: ActionDispatcher, logged_in: Session, tmp_path: Path) -> None:
    dispatcher.dispatch(logged_in, "account")
    target = tmp_path / "export.json"

    outcome = dispatcher.dispatch(logged_in, "export", {"path": str(target)})

    assert outcome.ok
    assert outcome.page == AccountSettings()
    assert json.loads(target.read_text(encoding="utf-8"))["account"]["username"] == "alice"


def test_delete_account(dispatcher: ActionDispatcher, logged_in: Session, store: DocumentStore) -> None:
    account_id = logged_in.account_id
    dispatcher.dispatch(logged_in, "account")

    outcome = dispatcher.dispatch(logged_in, "delete_account", {"password": "pw1"})
    assert outcome.page == Confirmation(pending="delete_account", target_id=account_id)

    outcome = dispatcher.dispatch(logged_in, "confirm")

    assert outcome.ok
    assert outcome.page == Login()
    assert logged_in.stack.pages == (Login(),)
    assert not logged_in.authenticated
    assert not store.exists(account_id)
    assert outcome.items == []


def test_mutating_action_derives_the_key_once_per_read_and_write(
    dispatcher: ActionDispatcher, logged_in: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    dispatcher.dispatch(logged_in, "list_epics")
    calls = []
    real = store_mod.derive_key

    def counting(*args, **kwargs):
        calls.append(args[1])
        return real(*args, **kwargs)

    monkeypatch.setattr(store_mod, "derive_key", counting)
    outcome = dispatcher.dispatch(logged_in, "create_epic", {"title": "Epic A"})

    assert outcome.ok
    assert [label for _, label in outcome.items] == ["[Open] Epic A (0 stories)"]
    # transact: one read, one write. The view reuses the written document.
    assert len(calls) == 2


def test_blank_description_clears_but_omitted_keeps(
    dispatcher: ActionDispatcher, logged_in: Session
) -> None:
    dispatcher.dispatch(logged_in, "list_epics")
    outcome = dispatcher.dispatch(logged_in, "create_epic", {"title": "Epic A", "description": "notes"})
    (epic_id, _), = outcome.items
    dispatcher.dispatch(logged_in, "open_epic", {"epic_id": epic_id})

    outcome = dispatcher.dispatch(logged_in, "update_epic", {"status": "Closed"})
    assert outcome.ok
    assert "notes" in outcome.lines

    outcome = dispatcher.dispatch(logged_in, "update_epic", {"title": "", "description": "  "})
    assert outcome.ok
    assert "(no description)" in outcome.lines
    epic = dispatcher.store.read(logged_in.account_id, "pw1").get_epic(epic_id)
    assert epic.description == ""
    assert epic.title == "Epic A"
    assert epic.status is Status.CLOSED


def test_confirm_outside_confirmation_page_is_rejected(
    dispatcher: ActionDispatcher, logged_in: Session
) -> None:
    with pytest.raises(ValidationError):
        dispatcher._do_confirm(logged_in, Dashboard(), {})


def test_confirm_with_unknown_pending_keeps_stack(
    dispatcher: ActionDispatcher, logged_in: Session
) -> None:
    logged_in.stack.push(Confirmation(pending="format_disk"))
    before = logged_in.stack.pages

    outcome = dispatcher.dispatch(logged_in, "confirm")

    assert isinstance(outcome.error, ValidationError)
    assert logged_in.stack.pages == before
