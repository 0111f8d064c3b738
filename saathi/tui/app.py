"""
Saathi terminal chat — a Textual front-end over ChatSession.
Emergency notice on top, the transcript in the middle, quick replies and
the input at the bottom. The input is disabled while a reply streams.
Entry point: saathi talk (alias: chat, tui)
"""
from __future__ import annotations

from typing import ClassVar

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, ScrollableContainer
from textual.widgets import Button, Footer, Header, Input, Static

from saathi.client.session import ChatSession
from saathi.client.transcript import Message
from saathi.errors import SessionBusy
from saathi.languages import available_languages, get_profile


class MessageView(Static):
    """One transcript bubble. Re-rendered in place as deltas arrive."""

    def __init__(self, message: Message, **kwargs):
        super().__init__(self._text(message), markup=False, classes=message.role, **kwargs)
        self.message = message

    @staticmethod
    def _text(msg: Message) -> str:
        who = "You" if msg.role == "user" else "Saathi"
        stamp = msg.created_at.astimezone().strftime("%H:%M")
        return f"{who}  {stamp}\n{msg.content or '…'}"

    def refresh_message(self) -> None:
        self.update(self._text(self.message))


class SaathiApp(App):
    """Chat with Saathi from the terminal."""

    TITLE = "Talk to Saathi"
    SUB_TITLE = "a safe, judgment-free space"
    CSS = """
    #notice { background: $warning 20%; color: $text; padding: 0 1; margin: 0 0 1 0; }
    #chat { height: 1fr; padding: 0 1; }
    MessageView { padding: 0 1; margin: 0 0 1 0; width: 80%; }
    MessageView.user { background: $primary 30%; margin-left: 20%; }
    MessageView.assistant { background: $surface; }
    #quick { height: auto; padding: 0 1; }
    #quick Button { margin-right: 1; min-width: 10; }
    #prompt { margin: 0 1; }
    """
    BINDINGS: ClassVar[list[Binding]] = [
        Binding("ctrl+q", "quit", "Quit", priority=True),
        Binding("ctrl+l", "clear_chat", "Clear chat"),
        Binding("ctrl+t", "toggle_language", "Language"),
        Binding("escape", "cancel_reply", "Stop reply"),
    ]

    def __init__(self, session: ChatSession, **kwargs):
        super().__init__(**kwargs)
        self.session = session
        self._views: dict[str, MessageView] = {}

    # ── Layout ────────────────────────────────────────────────────────────

    def compose(self) -> ComposeResult:
        profile = get_profile(self.session.language)
        yield Header(show_clock=True)
        yield Static(profile.emergency_notice, id="notice", markup=False)
        yield ScrollableContainer(id="chat")
        yield Horizontal(id="quick")
        yield Input(placeholder="Type your message here...", id="prompt")
        yield Footer()

    def on_mount(self) -> None:
        self.session.notify = self._notify
        self.session.transcript.add_listener(self._on_transcript_change)
        self._rebuild_transcript()
        self._rebuild_quick_replies()
        self.query_one("#prompt", Input).focus()

    def on_unmount(self) -> None:
        self.session.transcript.remove_listener(self._on_transcript_change)
        self.session.cancel()

    def _notify(self, severity: str, text: str) -> None:
        self.notify(text, severity=severity, timeout=6)

    # ── Transcript rendering ──────────────────────────────────────────────

    def _rebuild_transcript(self) -> None:
        chat = self.query_one("#chat", ScrollableContainer)
        chat.remove_children()
        self._views = {m.id: MessageView(m) for m in self.session.transcript}
        chat.mount_all(self._views.values())
        chat.scroll_end(animate=False)

    def _on_transcript_change(self, message: Message | None) -> None:
        if message is None:
            self._rebuild_transcript()
            return
        chat = self.query_one("#chat", ScrollableContainer)
        view = self._views.get(message.id)
        if self.session.transcript.get(message.id) is None:
            if view is not None:
                view.remove()
                del self._views[message.id]
            return
        if view is None:
            view = MessageView(message)
            self._views[message.id] = view
            chat.mount(view)
        else:
            view.refresh_message()
        chat.scroll_end(animate=False)

    def _rebuild_quick_replies(self) -> None:
        quick = self.query_one("#quick", Horizontal)
        quick.remove_children()
        replies = get_profile(self.session.language).quick_replies
        quick.mount_all(
            Button(text, classes="quick") for text in replies
        )

    # ── Input ─────────────────────────────────────────────────────────────

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if "quick" in event.button.classes:
            prompt = self.query_one("#prompt", Input)
            prompt.value = str(event.button.label)
            prompt.focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value
        if not text.strip() or self.session.busy:
            return
        event.input.value = ""
        self.send(text)

    @work(exclusive=True, group="send")
    async def send(self, text: str) -> None:
        prompt = self.query_one("#prompt", Input)
        prompt.disabled = True
        try:
            await self.session.submit(text)
        except SessionBusy as e:
            self.notify(e.public_message, severity="warning")
        finally:
            prompt.disabled = False
            prompt.focus()

    # ── Actions ───────────────────────────────────────────────────────────

    def action_cancel_reply(self) -> None:
        self.session.cancel()

    async def action_clear_chat(self) -> None:
        await self.session.clear()

    async def action_toggle_language(self) -> None:
        codes = available_languages()
        current = codes.index(self.session.language)
        code = self.session.set_language(codes[(current + 1) % len(codes)])
        transcript = self.session.transcript
        # Untouched conversation: swap the greeting too
        if len(transcript) == 1 and transcript.messages[0].role == "assistant":
            await self.session.clear(code)
        profile = get_profile(code)
        self.query_one("#notice", Static).update(profile.emergency_notice)
        self._rebuild_quick_replies()
        self.notify(profile.name, timeout=2)


def run_tui(session: ChatSession | None = None) -> None:
    SaathiApp(session or ChatSession.from_config()).run()
