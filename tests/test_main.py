"""
Tests for the firestore-import command line.

The Firestore client factory and the importer are patched out; credential
and backup files are real temporary files.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import click
import pytest

from firestore_import import __version__
from firestore_import import main as cli
from firestore_import.importer import ImportDataError


@pytest.fixture
def patched_services(firestore_client):
    """Offline client plus a mock import routine"""
    with patch.object(cli, "get_firestore_client", return_value=firestore_client) as factory, \
            patch.object(cli, "firestore_import", new_callable=AsyncMock) as importer:
        yield factory, importer


def answer_prompt(monkeypatch, answer):
    prompt = MagicMock(return_value=answer)
    monkeypatch.setattr(click, "prompt", prompt)
    return prompt


class TestValidation:

    def test_missing_credentials(self, backup_file, capsys):
        assert cli.main(["-b", backup_file]) == 1

        out = capsys.readouterr().out
        assert "Missing: accountCredentials" in out
        assert "usage: firestore-import" in out

    def test_credentials_file_does_not_exist(self, backup_file, capsys):
        assert cli.main(["-a", "nowhere.json", "-b", backup_file]) == 1
        assert "Account credentials file does not exist: nowhere.json" in capsys.readouterr().out

    def test_credentials_fall_back_to_environment(self, monkeypatch, credentials_file, capsys):
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", credentials_file)

        assert cli.main([]) == 1

        # Credentials were found, so the next check is the one that fails
        assert "Missing: backupFile" in capsys.readouterr().out

    def test_backup_file_does_not_exist(self, credentials_file, capsys):
        assert cli.main(["-a", credentials_file, "-b", "gone.json"]) == 1
        assert "Backup file does not exist: gone.json" in capsys.readouterr().out

    def test_version_flag(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--version"])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestConfirmation:

    def test_declined_prompt_aborts(self, monkeypatch, credentials_file, backup_file,
                                    patched_services, capsys):
        _, importer = patched_services
        prompt = answer_prompt(monkeypatch, "n")

        assert cli.main(["-a", credentials_file, "-b", backup_file]) == 1

        out = capsys.readouterr().out
        assert "About to import data" in out
        assert "'demo-project' firestore at '[database root]'" in out
        assert "Import aborted." in out
        assert "Traceback" not in out
        prompt.assert_called_once()
        importer.assert_not_awaited()

    @pytest.mark.parametrize("answer", ["y", "Y", "  y  "])
    def test_confirmed_prompt_imports(self, monkeypatch, credentials_file, backup_file,
                                      patched_services, capsys, answer):
        _, importer = patched_services
        answer_prompt(monkeypatch, answer)

        assert cli.main(["-a", credentials_file, "-b", backup_file]) == 0

        importer.assert_awaited_once()
        assert "All done" in capsys.readouterr().out

    def test_yes_flag_skips_prompt(self, monkeypatch, credentials_file, backup_file,
                                   patched_services, capsys):
        _, importer = patched_services
        prompt = answer_prompt(monkeypatch, "n")

        assert cli.main(["-a", credentials_file, "-b", backup_file, "--yes"]) == 0

        prompt.assert_not_called()
        importer.assert_awaited_once()
        out = capsys.readouterr().out
        assert "About to import data" not in out
        assert "All done" in out

    def test_end_of_input_aborts(self, monkeypatch, credentials_file, backup_file,
                                 patched_services, capsys):
        _, importer = patched_services
        monkeypatch.setattr(click, "prompt", MagicMock(side_effect=click.Abort()))

        assert cli.main(["-a", credentials_file, "-b", backup_file]) == 1

        assert "Import aborted." in capsys.readouterr().out
        importer.assert_not_awaited()


class TestImportCall:

    def test_passes_backup_data_and_root(self, credentials_file, backup_file, firestore_client,
                                         patched_services):
        factory, importer = patched_services

        assert cli.main(["-a", credentials_file, "-b", backup_file, "-y"]) == 0

        data, reference, client = importer.await_args.args
        assert data == {"__collections__": {"users": {"alice": {"name": "Alice"}}}}
        assert reference is firestore_client
        assert client is firestore_client
        assert importer.await_args.kwargs == {
            "batch_size": 500,
            "max_concurrent_batches": 10,
            "retry_attempts": 3,
        }
        assert factory.call_args.args[0].project_id == "demo-project"

    def test_node_path_resolves_reference(self, monkeypatch, credentials_file, backup_file,
                                          patched_services, capsys):
        _, importer = patched_services
        answer_prompt(monkeypatch, "y")

        assert cli.main(["-a", credentials_file, "-b", backup_file, "-n", "a/b"]) == 0

        reference = importer.await_args.args[1]
        assert reference.path == "a/b"
        assert "firestore at 'a/b'" in capsys.readouterr().out

    def test_settings_reach_importer(self, monkeypatch, credentials_file, backup_file,
                                     patched_services):
        _, importer = patched_services
        monkeypatch.setenv("IMPORT_BATCH_SIZE", "50")

        assert cli.main(["-a", credentials_file, "-b", backup_file, "-y"]) == 0
        assert importer.await_args.kwargs["batch_size"] == 50

    def test_import_error_exits_with_traceback(self, credentials_file, backup_file,
                                               patched_services, capsys):
        _, importer = patched_services
        importer.side_effect = ImportDataError("bad tree")

        assert cli.main(["-a", credentials_file, "-b", backup_file, "-y"]) == 1

        out = capsys.readouterr().out
        assert "ImportDataError: bad tree" in out
        assert "Traceback" in out
        assert "All done" not in out

    def test_invalid_node_path_is_reported(self, credentials_file, backup_file,
                                           patched_services, capsys):
        _, importer = patched_services

        assert cli.main(["-a", credentials_file, "-b", backup_file, "-n", "a//b", "-y"]) == 1

        assert "ValueError" in capsys.readouterr().out
        importer.assert_not_awaited()

    def test_invalid_settings_are_reported(self, monkeypatch, credentials_file, backup_file,
                                           patched_services, capsys):
        monkeypatch.setenv("IMPORT_BATCH_SIZE", "1000")

        assert cli.main(["-a", credentials_file, "-b", backup_file, "-y"]) == 1
        assert "IMPORT_BATCH_SIZE" in capsys.readouterr().out

    def test_malformed_setting_is_reported(self, monkeypatch, credentials_file, backup_file,
                                           patched_services, capsys):
        _, importer = patched_services
        monkeypatch.setenv("IMPORT_BATCH_SIZE", "abc")

        assert cli.main(["-a", credentials_file, "-b", backup_file, "-y"]) == 1

        out = capsys.readouterr().out
        assert "ValidationError:" in out
        assert "IMPORT_BATCH_SIZE" in out
        importer.assert_not_awaited()

    def test_prompt_runs_outside_event_loop(self, monkeypatch, credentials_file, backup_file,
                                            patched_services):
        _, importer = patched_services
        loops = []

        def prompt(*args, **kwargs):
            try:
                loops.append(asyncio.get_running_loop())
            except RuntimeError:
                loops.append(None)
            return "y"

        monkeypatch.setattr(click, "prompt", prompt)

        assert cli.main(["-a", credentials_file, "-b", backup_file]) == 0
        assert loops == [None]
        importer.assert_awaited_once()
