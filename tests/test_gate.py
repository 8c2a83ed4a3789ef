"""Tests for the Action Gate and multi-step confirmations."""

import pytest

from conftest import ScriptedPrompter
from walletvault.errors import ConfirmationIncomplete, UserRejectedAction
from walletvault.gate import ActionGate, ActionKind, AuditLog, ConfirmationToken


class TestActionGate:

    def test_no_cached_approval(self) -> None:
        """A yes is spent by the call that asked for it."""
        prompter = ScriptedPrompter(answers=[True])
        gate = ActionGate(prompter)
        gate.require(ActionKind.MOVE_FUNDS, "Send 1 ETH?")
        with pytest.raises(UserRejectedAction):
            gate.require(ActionKind.MOVE_FUNDS, "Send 1 ETH?")
        assert len(prompter.prompts) == 2

    def test_details_shown(self) -> None:
        prompter = ScriptedPrompter(answers=[True])
        ActionGate(prompter).require(ActionKind.SIGN_MESSAGE, "Sign?", details="Hello")
        assert prompter.prompts == [("Sign?", "Hello")]

    def test_decisions_audited(self, tmp_path) -> None:
        """Approvals and rejections both reach the audit log."""
        audit = AuditLog(str(tmp_path))
        gate = ActionGate(ScriptedPrompter(answers=[True, False]), audit)
        gate.require(ActionKind.GRANT_CAPABILITY, "Connect?")
        with pytest.raises(UserRejectedAction):
            gate.require(ActionKind.DISCLOSE_SECRET, "Reveal?")
        with open(audit.filepath, encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert lines[0].endswith("| grant_capability:approved | Connect?")
        assert lines[1].endswith("| disclose_secret:rejected | Reveal?")


class TestConfirmationToken:

    def test_two_affirmatives(self) -> None:
        token = ConfirmationToken(2)
        token.answer(True)
        assert not token.complete
        token.answer(True)
        assert token.complete
        token.ensure_complete()

    def test_refusal_voids(self) -> None:
        """A later yes cannot repair an earlier no."""
        token = ConfirmationToken(2)
        token.answer(False)
        token.answer(True)
        token.answer(True)
        assert not token.complete
        with pytest.raises(ConfirmationIncomplete):
            token.ensure_complete()

    def test_collect_stops_at_first_no(self) -> None:
        prompter = ScriptedPrompter(answers=[False, True])
        token = ConfirmationToken.collect(prompter)
        assert not token.complete
        assert len(prompter.prompts) == 1

    def test_collect_complete(self) -> None:
        prompter = ScriptedPrompter(answers=[True, True])
        assert ConfirmationToken.collect(prompter).complete
