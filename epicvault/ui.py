# -*- coding: utf-8 -*-
"""Textual UI for EpicVault.

This file contains ONLY the UI: one screen that renders whatever the
dispatcher says the current page is, a modal for collecting action input,
and the App wrapper. Navigation history lives in the dispatcher's
:class:`~epicvault.nav.NavigationStack`, not in Textual's screen stack.

Theme switching:
    We use a single theme.css with 3 variants (vt220/amber/neon) implemented
    as CSS class scopes: `.theme-vt220`, `.theme-amber`, `.theme-neon`.
    The app toggles one of these classes at runtime based on the saved config.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen, Screen
from textual.widgets import Button, Footer, Header, Input, Label, ListItem, ListView, Static

from .dispatcher import ActionDispatcher, Outcome, Session
from .logic import load_config, save_config
from .nav import EpicDetails, EpicList, Login, StoryDetails, StoryList
from .pages import ACTIONS, ActionSpec
from .store import DocumentStore

THEME_CSS_PATH = str(Path(__file__).with_name("theme.css"))

# Selecting a row on these pages runs the action with the row id.
_ROW_ACTIONS = {
    EpicList.tag: ("open_epic", "epic_id"),
    StoryList.tag: ("open_story", "story_id"),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_app_theme(app: App, theme_key: str) -> None:
    """Apply one of ('vt220_green', 'as400_amber', 'vector_neon') to the App."""
    valid = {
        "vt220_green": "theme-vt220",
        "as400_amber": "theme-amber",
        "vector_neon": "theme-neon",
    }
    target = valid.get(theme_key, "theme-vt220")
    for cls in ("theme-vt220", "theme-amber", "theme-neon"):
        app.set_class(False, cls)
    app.set_class(True, target)


def _edit_prefill(outcome: Outcome, action: str) -> Dict[str, str]:
    """Current values for an edit form, so a blank field really means "clear"."""
    doc = outcome.view.document
    page = outcome.page
    if doc is None:
        return {}
    if action == "update_epic" and isinstance(page, EpicDetails):
        item = doc.get_epic(page.epic_id)
    elif action == "update_story" and isinstance(page, StoryDetails):
        item = doc.get_story(page.story_id)
    else:
        return {}
    return {"title": item.title, "description": item.description, "status": item.status.value}


# ---------------------------------------------------------------------------
# Modals
# ---------------------------------------------------------------------------

class SettingsModal(ModalScreen[None]):
    """Theme choice. Persisted to config."""

    def compose(self) -> ComposeResult:
        active = str(load_config().get("active_theme", "vt220_green"))
        yield Container(
            Static("SETTINGS", classes="title"),
            Horizontal(
                Button("VT220 GREEN", id="t_green", classes="-primary" if active == "vt220_green" else ""),
                Button("AS/400 AMBER", id="t_amber", classes="-primary" if active == "as400_amber" else ""),
                Button("VECTOR NEON", id="t_neon", classes="-primary" if active == "vector_neon" else ""),
                id="theme-row",
            ),
            Horizontal(Button("Close", id="close")),
            id="modal-card",
            classes="layer-ui",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        bid = event.button.id or ""
        themes = {"t_green": "vt220_green", "t_amber": "as400_amber", "t_neon": "vector_neon"}
        if bid in themes:
            cfg = load_config()
            cfg["active_theme"] = themes[bid]
            save_config(cfg)
            _apply_app_theme(self.app, themes[bid])
        self.dismiss(None)


class ActionInputModal(ModalScreen[Optional[Dict[str, str]]]):
    """Collects the fields an action needs. Dismisses with None on cancel."""

    def __init__(self, spec: ActionSpec, prefill: Optional[Dict[str, str]] = None) -> None:
        super().__init__()
        self.spec = spec
        self.prefill = prefill or {}

    def compose(self) -> ComposeResult:
        inputs = [
            Input(
                value=self.prefill.get(fld.name, ""),
                placeholder=fld.label if not fld.choices else f"{fld.label} ({'/'.join(fld.choices)})",
                password=fld.secret,
                id=f"f_{fld.name}",
            )
            for fld in self.spec.fields
        ]
        yield Container(
            Static(self.spec.label.upper(), classes="title"),
            *inputs,
            Horizontal(Button("OK", id="ok", classes="-primary"), Button("Cancel", id="cancel")),
            id="modal-card",
            classes="layer-ui",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if (event.button.id or "") == "ok":
            values = {
                fld.name: self.query_one(f"#f_{fld.name}", Input).value for fld in self.spec.fields
            }
            self.dismiss(values)
        else:
            self.dismiss(None)


# ---------------------------------------------------------------------------
# Screens
# ---------------------------------------------------------------------------

class VaultScreen(Screen):
    """Renders the dispatcher's current page: text, selectable rows, actions."""

    BINDINGS = [
        Binding("escape", "go_back", "Back"),
        Binding("ctrl+q", "app.quit", "Quit"),
    ]
    LAYERS = ("bg", "ui")

    def compose(self) -> ComposeResult:
        cfg = load_config()
        if cfg.get("ascii_art_enabled", True) and cfg.get("ascii_art"):
            yield Static(str(cfg.get("ascii_art")), id="ascii", classes="layer-bg", markup=False)
        yield Header(classes="layer-ui")
        with Container(id="modal-card", classes="layer-ui"):
            self.title_label = Static("", classes="title")
            yield self.title_label
            self.body = Static("", id="page-body", markup=False)
            yield self.body
            self.rows = ListView(id="page-rows")
            yield self.rows
            self.action_bar = Horizontal(id="actions")
            yield self.action_bar
            yield Horizontal(Button("Settings", id="open_settings"))
        yield Footer(classes="layer-ui")

    async def on_mount(self) -> None:
        await self.show(self.app.dispatcher.start(self.app.session))

    async def show(self, outcome: Outcome) -> None:
        self.outcome = outcome
        self.title_label.update(outcome.title.upper())
        self.body.update("\n".join(outcome.lines))

        await self.rows.clear()
        rows = []
        for row_id, label in outcome.items:
            item = ListItem(Label(label, markup=False))
            item.data = row_id
            rows.append(item)
        await self.rows.extend(rows)

        await self.action_bar.remove_children()
        await self.action_bar.mount_all(
            Button(ACTIONS[name].label, id=f"act_{name}") for name in outcome.actions
        )

        if outcome.error is not None:
            self.app.notify(str(outcome.error), severity="error")
        elif outcome.message:
            self.app.notify(outcome.message)

    async def run_action(self, name: str, params: Optional[Dict[str, str]] = None) -> None:
        outcome = self.app.dispatcher.dispatch(self.app.session, name, params or {})
        await self.show(outcome)

    async def ask_and_run(self, name: str, prefill: Optional[Dict[str, str]] = None) -> None:
        spec = ACTIONS[name]
        if not spec.fields:
            await self.run_action(name)
            return

        async def submitted(values: Optional[Dict[str, str]]) -> None:
            if values is not None:
                await self.run_action(name, values)

        await self.app.push_screen(ActionInputModal(spec, prefill), submitted)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        bid = event.button.id or ""
        if bid == "open_settings":
            await self.app.push_screen(SettingsModal())
        elif bid.startswith("act_"):
            name = bid[len("act_"):]
            await self.ask_and_run(name, _edit_prefill(self.outcome, name))

    async def on_list_view_selected(self, message: ListView.Selected) -> None:
        row_id = getattr(message.item, "data", None)
        if row_id is None:
            return
        tag = self.outcome.page.tag
        if tag == Login.tag:
            await self.ask_and_run("login", {"username": row_id})
        elif tag in _ROW_ACTIONS:
            action, param = _ROW_ACTIONS[tag]
            await self.run_action(action, {param: row_id})

    async def action_go_back(self) -> None:
        if "back" in self.outcome.actions:
            await self.run_action("back")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

class EpicVaultApp(App):
    """Textual App wrapper. Loads CSS, wires the store, applies theme."""

    TITLE = "EPIC//VAULT"
    CSS_PATH = THEME_CSS_PATH

    def __init__(self, store: DocumentStore) -> None:
        super().__init__()
        self.dispatcher = ActionDispatcher(store)
        self.session = Session()

    async def on_mount(self) -> None:
        cfg = load_config()
        _apply_app_theme(self, str(cfg.get("active_theme", "vt220_green")))
        await self.push_screen(VaultScreen())

    async def on_unmount(self) -> None:
        self.session.teardown()
