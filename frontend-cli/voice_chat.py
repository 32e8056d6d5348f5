#!/usr/bin/env python3
"""Voice Chat CLI - Terminal coaching client with spoken replies.

Streams each reply from the backend over SSE, renders the text live and
plays sentence audio through the local sound device as it arrives.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import httpx
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style
from rich.text import Text

from voicecoach.playback import (
    GestureTarget,
    StreamingAudioQueue,
    StreamingTTSClient,
)
from voicecoach.services.tts.types import AudioChunk

ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")
HIGHLIGHT_STYLE = Style(color="black", bgcolor="bright_green")


class VoiceChat:
    """Terminal chat client with streaming speech playback."""

    def __init__(self, server_url: str, voice: Optional[str] = None, mute: bool = False):
        self.server_url = server_url.rstrip("/")
        self.voice = voice
        self.mute = mute
        self.console = Console()
        self.running = True
        self.messages: list[dict[str, str]] = []
        self.gestures = GestureTarget()
        self._live: Optional[Live] = None
        self._audio_done = asyncio.Event()

        self.queue = StreamingAudioQueue(
            gesture_target=self.gestures,
            on_complete=self._audio_done.set,
        )
        self.client = StreamingTTSClient(
            self.queue,
            server_url=self.server_url,
            on_text_update=self._render_text,
            on_complete=self._on_turn_complete,
            on_error=self._on_error,
        )
        self._turn_text = ""
        self._needs_batch_audio = False
        self._session_complete = False

    async def _check_health(self) -> bool:
        """Check if backend is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
                if resp.status_code == 200:
                    data = resp.json()
                    provider = data.get("tts_provider") or "disabled"
                    self.console.print(
                        f"[dim]Connected. Model: {data.get('default_model', '?')}, "
                        f"speech: {provider}[/dim]"
                    )
                    return True
        except httpx.HTTPError as e:
            self.console.print(
                f"Cannot connect to backend: {e}", style=ERROR_STYLE, markup=False
            )
        return False

    # -- stream callbacks --

    def _render_text(self, text: str) -> None:
        if self._live is not None:
            self._live.update(Markdown(text))

    def _on_turn_complete(
        self, full_text: str, session_complete: bool, used_streaming_tts: bool
    ) -> None:
        self._turn_text = full_text
        self._session_complete = session_complete
        self._needs_batch_audio = not used_streaming_tts and bool(full_text.strip())

    def _on_error(self, message: str) -> None:
        self.console.print(message, style=ERROR_STYLE, markup=False)

    # -- audio --

    async def _play_batch(self, text: str) -> None:
        """Speak the whole reply when no sentence audio was streamed."""
        payload = {"text": text}
        if self.voice:
            payload["voice"] = self.voice
        try:
            async with httpx.AsyncClient(timeout=60.0) as client:
                resp = await client.post(
                    f"{self.server_url}/api/voice/synthesize", json=payload
                )
        except httpx.HTTPError as e:
            self.console.print(f"[dim]Speech unavailable: {e}[/dim]")
            return
        if resp.status_code != 200:
            self.console.print(f"[dim]Speech unavailable ({resp.status_code})[/dim]")
            return

        data = resp.json()
        self.queue.reset_playback_state()
        await self.queue.enqueue_chunk(
            AudioChunk(
                chunk_index=0,
                audio_base64=data["audio"],
                content_type=data["contentType"],
                word_timings=data.get("wordTimings", []),
                duration_ms=data.get("estimatedDurationMs", 0),
                is_last=True,
                text=text,
            )
        )

    async def _wait_for_audio(self) -> None:
        """Show word highlighting until playback finishes or Ctrl+C."""
        if not self.queue.is_playing:
            return
        words = self.queue.tts_words
        with Live(console=self.console, refresh_per_second=20, transient=True) as live:
            while not self._audio_done.is_set():
                index = self.queue.current_word_index()
                line = Text()
                for i, word in enumerate(words):
                    line.append(word, style=HIGHLIGHT_STYLE if i == index else None)
                    line.append(" ")
                live.update(line)
                try:
                    await asyncio.wait_for(self._audio_done.wait(), timeout=0.05)
                except asyncio.TimeoutError:
                    continue

    # -- chat loop --

    async def _stream_chat(self, message: str) -> None:
        """Send message and play the streamed reply."""
        self.messages.append({"role": "user", "content": message})
        self._turn_text = ""
        self._needs_batch_audio = False
        self._audio_done.clear()

        with Live(console=self.console, refresh_per_second=10) as live:
            self._live = live
            try:
                await self.client.send(self.messages, voice=self.voice)
            finally:
                self._live = None

        if not self._turn_text:
            return
        self.messages.append({"role": "assistant", "content": self._turn_text})

        if self.mute:
            await self.queue.stop()
            return
        if self._needs_batch_audio:
            await self._play_batch(self._turn_text)
        await self._wait_for_audio()

        if self._session_complete:
            self.console.print(
                Panel("Session complete. Great work today.", border_style="green")
            )

    def _show_help(self) -> None:
        help_text = """
[bold]Commands:[/bold]
  /help     Show this help message
  /clear    Start a new conversation
  /mute     Toggle spoken replies
  /quit     Exit voice-chat

[bold]Shortcuts:[/bold]
  Ctrl+C    Stop speaking
  Ctrl+D    Exit voice-chat
"""
        self.console.print(
            Panel(help_text.strip(), title="Voice Chat Help", border_style="blue")
        )

    async def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        command = cmd.strip().split(maxsplit=1)[0].lower()
        if command == "/help":
            self._show_help()
        elif command == "/clear":
            await self.client.stop()
            self.messages.clear()
            self.console.print("Conversation cleared.", style=INFO_STYLE)
        elif command == "/mute":
            self.mute = not self.mute
            state = "muted" if self.mute else "on"
            self.console.print(f"Speech {state}.", style=INFO_STYLE)
        elif command == "/quit":
            self.running = False
        else:
            return False
        return True

    async def run(self) -> None:
        """Main chat loop."""
        if not await self._check_health():
            return

        self.console.print()
        self.console.print(
            "[bold]Voice Chat[/bold] - Type /help for commands, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.console.print()

        try:
            while self.running:
                try:
                    user_input = await asyncio.to_thread(
                        Prompt.ask, "[bold blue]You[/bold blue]"
                    )
                    # Typing counts as a gesture for a suspended output device.
                    self.gestures.dispatch_event("click")
                    if not user_input.strip():
                        continue
                    if user_input.startswith("/") and await self._handle_command(
                        user_input
                    ):
                        continue

                    self.console.print()
                    await self._stream_chat(user_input)
                    self.console.print()
                except EOFError:
                    self.console.print("\n[dim]Goodbye![/dim]")
                    break
                except KeyboardInterrupt:
                    self.queue.reset_playback_state()
                    self.console.print()
                    continue
        finally:
            await self.client.stop()
            await self.client.aclose()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Voice Chat - spoken coaching sessions in the terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  voice-chat                            Connect to localhost:8000
  voice-chat --server http://pi:8000    Connect to remote server
  voice-chat --voice hannah             Request a specific voice

Environment Variables:
  VOICECHAT_SERVER    Default server URL
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("VOICECHAT_SERVER", "http://localhost:8000"),
        help="Backend server URL (default: http://localhost:8000)",
    )
    parser.add_argument("--voice", "-v", default=None, help="TTS voice override")
    parser.add_argument("--mute", action="store_true", help="Text only, no audio")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "WARNING"),
        help="Logging level for playback diagnostics",
    )

    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING))

    def signal_handler(sig, frame):
        print("\nExiting...")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    chat = VoiceChat(server_url=args.server, voice=args.voice, mute=args.mute)
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
