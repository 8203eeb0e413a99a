"""Tests for pageintent.cli: argument parsing, command dispatch, exit codes."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pageintent import ActionType, ElementKind, Intent, __version__
from pageintent.cli import build_parser, main
from pageintent.errors import BrowserError
from pageintent.requests import DetectIntent, ProcessUtterance, ScanPage
from pageintent.session import OutcomeKind, TurnOutcome
from tests._helpers import make_element


def _fake_open_session(session: MagicMock, calls: list[dict]):
    @asynccontextmanager
    async def _open(url=None, **kwargs):
        calls.append({"url": url, **kwargs})
        yield session

    return _open


@pytest.fixture
def fake_session():
    session = MagicMock()
    session.handle = AsyncMock()
    session.process_utterance = AsyncMock()
    calls: list[dict] = []
    with (
        patch("pageintent.cli.open_session", _fake_open_session(session, calls)),
        patch("pageintent.cli.configure") as configure,
    ):
        session.calls = calls
        session.configure = configure
        yield session


class TestParser:
    def test_scan_defaults(self):
        args = build_parser().parse_args(["scan", "https://example.com"])
        assert args.command == "scan"
        assert args.url == "https://example.com"
        assert args.format == "text"
        assert args.headed is False

    def test_run_collects_utterances(self):
        args = build_parser().parse_args(["--headed", "run", "https://x.test", "click login", "scroll down", "-y"])
        assert args.utterances == ["click login", "scroll down"]
        assert args.yes is True
        assert args.headed is True

    def test_global_model_flags(self):
        args = build_parser().parse_args(["--model", "m1", "--base-url", "http://h/v1", "classify", "https://x", "hi"])
        assert args.model == "m1"
        assert args.base_url == "http://h/v1"
        assert args.utterance == "hi"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestCommands:
    def test_scan_json(self, fake_session, capsys):
        fake_session.handle.return_value = [
            make_element(ElementKind.BUTTON, "Sign in", dom_id="login"),
            make_element(ElementKind.LINK, "Help"),
        ]
        main(["scan", "https://example.com", "--format", "json"])

        fake_session.handle.assert_awaited_once_with(ScanPage())
        payload = json.loads(capsys.readouterr().out)
        assert payload["stats"]["total"] == 2
        assert payload["elements"][0]["displayText"] == "Sign in"
        assert fake_session.calls[0]["url"] == "https://example.com"

    def test_scan_text_table(self, fake_session, capsys):
        fake_session.handle.return_value = [make_element(ElementKind.BUTTON, "Sign in")]
        main(["scan", "https://example.com"])
        out = capsys.readouterr().out
        assert "Sign in" in out
        assert "1 interactive elements" in out

    def test_classify_prints_intent(self, fake_session, capsys):
        fake_session.handle.return_value = Intent(
            is_action=True, confidence=0.9, action_type=ActionType.CLICK, target_description="login"
        )
        main(["classify", "https://example.com", "click login"])

        fake_session.handle.assert_awaited_once_with(DetectIntent("click login"))
        assert json.loads(capsys.readouterr().out)["actionType"] == "click"

    def test_run_json_one_line_per_turn(self, fake_session, capsys):
        fake_session.handle.return_value = TurnOutcome(OutcomeKind.QUESTION, message="Answered", turn_id="t1")
        main(["run", "https://example.com", "what is this", "and this", "--format", "json"])

        assert fake_session.handle.await_count == 2
        assert fake_session.handle.await_args_list[1].args[0] == ProcessUtterance("and this")
        lines = capsys.readouterr().out.strip().splitlines()
        assert [json.loads(line)["turnId"] for line in lines] == ["t1", "t1"]

    def test_run_without_yes_has_no_confirm(self, fake_session):
        fake_session.handle.return_value = TurnOutcome(OutcomeKind.QUESTION)
        main(["run", "https://example.com", "hi"])
        assert fake_session.calls[0]["confirm"] is None

    def test_run_yes_confirms_everything(self, fake_session):
        fake_session.handle.return_value = TurnOutcome(OutcomeKind.QUESTION)
        main(["run", "https://example.com", "hi", "--yes"])
        confirm = fake_session.calls[0]["confirm"]
        assert asyncio.run(confirm("Password field", None)) is True

    def test_flags_reach_config(self, fake_session):
        fake_session.handle.return_value = TurnOutcome(OutcomeKind.QUESTION)
        main(["--model", "m2", "--no-highlight", "--headed", "run", "https://example.com", "hi"])
        call = fake_session.calls[0]
        assert call["config"].model == "m2"
        assert call["config"].highlight is False
        assert call["browser_config"].headless is False

    def test_repl_exits_on_quit(self, fake_session):
        fake_session.process_utterance.return_value = TurnOutcome(OutcomeKind.QUESTION, message="Answered")
        with patch("pageintent.cli.Console") as console_cls:
            console_cls.return_value.input.side_effect = ["", "scroll down", "quit", "never read"]
            main(["repl", "https://example.com"])
        fake_session.process_utterance.assert_awaited_once_with("scroll down")

    def test_repl_exits_on_eof(self, fake_session):
        with patch("pageintent.cli.Console") as console_cls:
            console_cls.return_value.input.side_effect = EOFError
            main(["repl", "https://example.com"])
        fake_session.process_utterance.assert_not_awaited()


class TestMain:
    def test_logging_configured_from_flags(self, fake_session):
        fake_session.handle.return_value = []
        main(["-v", "--json-logs", "scan", "https://example.com"])
        fake_session.configure.assert_called_once_with(json_output=True, level="DEBUG")

    def test_explicit_log_level_wins(self, fake_session):
        fake_session.handle.return_value = []
        main(["-v", "--log-level", "WARNING", "scan", "https://example.com"])
        fake_session.configure.assert_called_once_with(json_output=False, level="WARNING")

    def test_domain_error_exits_1(self, fake_session, capsys):
        fake_session.handle.side_effect = BrowserError("Refusing to navigate to file URL")
        with pytest.raises(SystemExit) as exc_info:
            main(["scan", "file:///etc/passwd"])
        assert exc_info.value.code == 1
        assert "Error: Refusing" in capsys.readouterr().err

    def test_keyboard_interrupt_exits_130(self, fake_session):
        with patch("pageintent.cli.asyncio.run", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                main(["scan", "https://example.com"])
        assert exc_info.value.code == 130
