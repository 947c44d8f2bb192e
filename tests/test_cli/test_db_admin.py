"""Tests for the database admin CLI."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from cli.db_admin import AdminClient, main, validate_server_url

STATUS = {
    "remote_configured": True,
    "bucket": "db-bucket",
    "provider_state": "ready",
    "startup_decision": "download",
    "startup_detail": "",
    "bootstrap_outcome": "exhausted",
    "uploads_suspended": True,
    "suspension_reason": "bootstrap recovery exhausted",
    "local": {"path": "/data/app.db", "exists": True, "size": 4096, "last_modified": "t1"},
    "remote": {"key": "app.db", "exists": False, "error": "injected"},
    "last_sync": None,
}


class TestValidateServerUrl:
    def test_rejects_insecure_http_for_remote_hosts(self) -> None:
        with pytest.raises(ValueError, match="HTTPS is required"):
            validate_server_url("http://example.com")

    def test_allows_https_for_remote_hosts(self) -> None:
        assert validate_server_url("https://example.com/") == "https://example.com"

    def test_allows_http_for_localhost(self) -> None:
        assert validate_server_url("http://localhost:8000") == "http://localhost:8000"

    def test_rejects_missing_scheme(self) -> None:
        with pytest.raises(ValueError, match="scheme"):
            validate_server_url("example.com")


class TestAdminClient:
    def test_sends_token_and_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"outcome": "uploaded", "action": "upload"})

        with AdminClient(
            "http://localhost:8000", "tok", transport=httpx.MockTransport(handler)
        ) as client:
            result = client.sync("upload", force=True)

        assert result["outcome"] == "uploaded"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/admin/database/sync"
        assert request.url.params["action"] == "upload"
        assert request.url.params["force"] == "true"
        assert request.headers["authorization"] == "Bearer tok"

    def test_error_status_raises(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(403, json={"detail": "Admin access required"})
        )
        with (
            AdminClient("http://localhost:8000", "bad", transport=transport) as client,
            pytest.raises(httpx.HTTPStatusError),
        ):
            client.status()


def _mock_client(mock_cls: MagicMock) -> MagicMock:
    client: MagicMock = mock_cls.return_value.__enter__.return_value
    return client


class TestMain:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        main([])
        assert "blobsync-admin" in capsys.readouterr().out

    def test_status(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("cli.db_admin.AdminClient") as mock_cls:
            _mock_client(mock_cls).status.return_value = STATUS
            main(["--token", "tok", "status"])

        mock_cls.assert_called_once_with("http://localhost:8000", "tok")
        out = capsys.readouterr().out
        assert "UPLOADS SUSPENDED: bootstrap recovery exhausted" in out
        assert "Remote:            injected" in out

    def test_push_force(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("cli.db_admin.AdminClient") as mock_cls:
            client = _mock_client(mock_cls)
            client.sync.return_value = {"action": "upload", "outcome": "uploaded", "detail": ""}
            main(["--token", "tok", "push", "--force"])

        client.sync.assert_called_once_with("upload", force=True)
        assert capsys.readouterr().out.strip() == "upload: uploaded"

    @pytest.mark.parametrize(
        ("command", "action"),
        [("pull", "download"), ("restore-backup", "restore-backup")],
    )
    def test_download_commands(self, command: str, action: str) -> None:
        with patch("cli.db_admin.AdminClient") as mock_cls:
            client = _mock_client(mock_cls)
            client.sync.return_value = {"action": action, "outcome": "downloaded"}
            main(["--token", "tok", command])
        client.sync.assert_called_once_with(action)

    def test_token_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSYNC_ADMIN_TOKEN", "env-token")
        with patch("cli.db_admin.AdminClient") as mock_cls:
            _mock_client(mock_cls).stats.return_value = {
                "tables": {"settings": 8},
                "file_size": 4096,
                "page_count": 1,
                "page_size": 4096,
                "freelist_count": 0,
            }
            main(["stats"])
        assert mock_cls.call_args.args[1] == "env-token"

    def test_prompts_for_missing_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BLOBSYNC_ADMIN_TOKEN", raising=False)
        with (
            patch("cli.db_admin.getpass.getpass", return_value="typed") as prompt,
            patch("cli.db_admin.AdminClient") as mock_cls,
        ):
            _mock_client(mock_cls).backup.return_value = {"path": "/b/app.db", "size": 1}
            main(["backup"])
        prompt.assert_called_once()
        assert mock_cls.call_args.args[1] == "typed"

    def test_insecure_server_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--server", "http://example.com", "--token", "tok", "status"])
        assert exc_info.value.code == 1
        assert "HTTPS is required" in capsys.readouterr().out

    def test_http_error_exits_with_detail(self, capsys: pytest.CaptureFixture[str]) -> None:
        request = httpx.Request("POST", "http://localhost:8000/api/admin/database/sync")
        response = httpx.Response(
            409,
            content=json.dumps({"detail": "Uploads are suspended"}).encode(),
            headers={"content-type": "application/json"},
            request=request,
        )
        error = httpx.HTTPStatusError("conflict", request=request, response=response)
        with patch("cli.db_admin.AdminClient") as mock_cls:
            _mock_client(mock_cls).sync.side_effect = error
            with pytest.raises(SystemExit) as exc_info:
                main(["--token", "tok", "push"])
        assert exc_info.value.code == 1
        assert "409 Uploads are suspended" in capsys.readouterr().out

    def test_unreachable_server_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("cli.db_admin.AdminClient") as mock_cls:
            _mock_client(mock_cls).status.side_effect = httpx.ConnectError("refused")
            with pytest.raises(SystemExit) as exc_info:
                main(["--token", "tok", "status"])
        assert exc_info.value.code == 1
        assert "could not reach" in capsys.readouterr().out

    def test_failed_verification_exits_2(self) -> None:
        with patch("cli.db_admin.AdminClient") as mock_cls:
            _mock_client(mock_cls).verify.return_value = {"status": "corrupt", "detail": "bad"}
            with pytest.raises(SystemExit) as exc_info:
                main(["--token", "tok", "verify"])
        assert exc_info.value.code == 2
