"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

from voxdeck.storage import SqliteCardStore

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "voxdeck.db"


def run_cli_command(args: list[str], db_path: Path, stdin: str = "", timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command against a scratch database and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m voxdeck'
        db_path: Database file for this run
        stdin: Text fed to the command's standard input
        timeout: Maximum time to wait
    """
    env = {
        **os.environ,
        "DATABASE_PATH": str(db_path),
        "API_BASE_URL": "",
        "LOG_LEVEL": "WARNING",
        "COLUMNS": "120",
    }
    result = subprocess.run(
        [sys.executable, "-m", "voxdeck", *args],
        cwd=PROJECT_ROOT,
        env=env,
        input=stdin,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return result.returncode, result.stdout, result.stderr


def first_card_id(db_path: Path) -> str:
    store = SqliteCardStore(db_path)
    try:
        return store.conn.execute("SELECT id FROM cards ORDER BY created_at LIMIT 1").fetchone()["id"]
    finally:
        store.close()


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, db_path):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command(["--help"], db_path)

        assert code == 0, f"Help failed: {stderr}"
        assert "review" in stdout
        assert "Commands" in stdout

    @pytest.mark.parametrize("command", ["review", "settings", "add"])
    def test_command_help(self, db_path, command):
        code, stdout, stderr = run_cli_command([command, "--help"], db_path)

        assert code == 0, f"{command} help failed: {stderr}"


class TestDeckCommands:
    """Test deck management commands."""

    def test_add_deck_and_list(self, db_path):
        code, stdout, stderr = run_cli_command(["add-deck", "Spanish"], db_path)
        assert code == 0, stderr
        assert "Created deck Spanish" in stdout

        code, stdout, _ = run_cli_command(["add", "Spanish", "uno", "one", "--tags", "numbers"], db_path)
        assert code == 0
        assert "Added 1 card(s)" in stdout

        code, stdout, _ = run_cli_command(["decks"], db_path)
        assert code == 0
        assert "Spanish" in stdout

    def test_no_decks(self, db_path):
        code, stdout, _ = run_cli_command(["decks"], db_path)

        assert code == 0
        assert "No decks yet" in stdout

    def test_duplicate_deck_fails(self, db_path):
        run_cli_command(["add-deck", "Spanish"], db_path)

        code, stdout, _ = run_cli_command(["add-deck", "Spanish"], db_path)

        assert code == 1
        assert "already exists" in stdout

    def test_cloze_note(self, db_path):
        run_cli_command(["add-deck", "Geo"], db_path)

        code, stdout, _ = run_cli_command(["add", "Geo", "{{c1::Madrid}} is in {{c2::Spain}}", "--cloze"], db_path)

        assert code == 0
        assert "Added 2 card(s)" in stdout

    def test_settings_are_clamped(self, db_path):
        run_cli_command(["add-deck", "Spanish"], db_path)

        code, stdout, _ = run_cli_command(
            ["settings", "Spanish", "--retention", "1.5", "--learning-steps", "2,20"],
            db_path,
        )

        assert code == 0
        assert "0.99" in stdout
        assert "2m, 20m" in stdout

    def test_stats(self, db_path):
        run_cli_command(["add-deck", "Spanish"], db_path)
        run_cli_command(["add", "Spanish", "uno", "one"], db_path)

        code, stdout, _ = run_cli_command(["stats", "Spanish"], db_path)

        assert code == 0
        assert "Due now" in stdout

    def test_unknown_deck(self, db_path):
        code, stdout, _ = run_cli_command(["stats", "Nope"], db_path)

        assert code == 1
        assert "Deck not found" in stdout

    def test_reset_deck(self, db_path):
        run_cli_command(["add-deck", "Spanish"], db_path)
        run_cli_command(["add", "Spanish", "uno", "one"], db_path)

        code, stdout, stderr = run_cli_command(["reset-deck", "Spanish", "--yes"], db_path)

        assert code == 0, stderr
        assert "Reset 1 card(s)" in stdout

    def test_delete_deck(self, db_path):
        run_cli_command(["add-deck", "Spanish"], db_path)
        run_cli_command(["add", "Spanish", "uno", "one"], db_path)

        code, stdout, stderr = run_cli_command(["delete-deck", "Spanish", "--yes"], db_path)
        assert code == 0, stderr
        assert "Deleted deck Spanish" in stdout

        code, stdout, _ = run_cli_command(["decks"], db_path)
        assert "No decks yet" in stdout


class TestCardCommands:
    """Test per-card commands."""

    @pytest.fixture
    def card_id(self, db_path):
        run_cli_command(["add-deck", "Spanish"], db_path)
        run_cli_command(["add", "Spanish", "uno", "one"], db_path)
        return first_card_id(db_path)

    def test_preview(self, db_path, card_id):
        code, stdout, stderr = run_cli_command(["preview", card_id], db_path)

        assert code == 0, stderr
        assert "uno" in stdout
        assert "again" in stdout

    def test_edit(self, db_path, card_id):
        code, stdout, stderr = run_cli_command(["edit", card_id, "--back", "ONE", "--tags", "numbers"], db_path)

        assert code == 0, stderr
        assert "Note updated" in stdout

        _, stdout, _ = run_cli_command(["preview", card_id], db_path)
        assert "uno" in stdout

    def test_edit_needs_a_change(self, db_path, card_id):
        code, stdout, _ = run_cli_command(["edit", card_id], db_path)

        assert code == 1
        assert "Nothing to change" in stdout

    def test_unsuspend(self, db_path, card_id):
        code, stdout, _ = run_cli_command(["unsuspend", card_id], db_path)

        assert code == 0
        assert "unsuspended" in stdout

    def test_reset(self, db_path, card_id):
        code, stdout, _ = run_cli_command(["reset", card_id, "--yes"], db_path)

        assert code == 0
        assert "reset" in stdout


class TestReviewCommand:
    """Test a typed review session."""

    def test_review_session(self, db_path):
        run_cli_command(["add-deck", "Spanish"], db_path)
        run_cli_command(["add", "Spanish", "uno", "one"], db_path)

        code, stdout, stderr = run_cli_command(
            ["review", "Spanish", "--no-audio"],
            db_path,
            stdin="answer\ngood\n",
        )

        assert code == 0, stderr
        assert "uno" in stdout
        assert "Session Complete!" in stdout

        store = SqliteCardStore(db_path)
        try:
            assert store.session_history("Spanish")[0].cards_reviewed == 1
        finally:
            store.close()

    def test_nothing_due(self, db_path):
        run_cli_command(["add-deck", "Empty"], db_path)

        code, stdout, _ = run_cli_command(["review", "Empty", "--no-audio"], db_path)

        assert code == 0
        assert "0 card(s) due" in stdout
