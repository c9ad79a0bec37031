"""Tests for error handling across the HTTP client, file system and error service."""

import json
import os
from pathlib import Path
from unittest.mock import Mock, patch

import httpx
import pytest
from hypothesis import given, settings, strategies as st

from goldberg_manager.services import FileSystemService, HttpClientService
from goldberg_manager.services.errors import (
    AppError,
    ConfigError,
    DownloadError,
    ErrorCategory,
    ErrorHandlingService,
    ErrorSeverity,
    ProvisioningError,
    StorageError,
    SyncError,
)


class TestHttpClientErrorHandling:
    """HTTP failures are logged with technical details and re-raised."""

    @given(
        error_type=st.sampled_from(["network_error", "timeout_error", "http_4xx_error", "http_5xx_error"]),
        error_message=st.text(min_size=5, max_size=100),
    )
    @pytest.mark.asyncio
    @settings(deadline=None, max_examples=25)
    async def test_failures_are_logged_with_details(self, error_type: str, error_message: str) -> None:
        client = HttpClientService(timeout=1.0, max_retries=1, base_delay=0, rate_limit_delay=0)

        if error_type == "network_error":
            mock_error = httpx.ConnectError(error_message)
        elif error_type == "timeout_error":
            mock_error = httpx.TimeoutException(error_message)
        else:
            mock_response = Mock()
            mock_response.status_code = 404 if error_type == "http_4xx_error" else 500
            mock_error = httpx.HTTPStatusError(error_message, request=Mock(), response=mock_response)

        with patch.object(client._client, "get", side_effect=mock_error):
            with patch("goldberg_manager.services.http_client.log") as mock_logger:
                with pytest.raises(httpx.HTTPError):
                    await client.get("https://api.steampowered.com/test")

                log_calls = mock_logger.warning.call_args_list + mock_logger.error.call_args_list
                assert log_calls
                assert any("error" in kwargs or "url" in kwargs for _, kwargs in log_calls)

        await client.close()

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self) -> None:
        client = HttpClientService(max_retries=3, base_delay=0, rate_limit_delay=0)
        mock_response = Mock()
        mock_response.status_code = 403
        error = httpx.HTTPStatusError("Forbidden", request=Mock(), response=mock_response)

        with patch.object(client._client, "get", side_effect=error) as mock_get:
            with pytest.raises(httpx.HTTPStatusError):
                await client.get("https://api.steampowered.com/forbidden")
            assert mock_get.call_count == 1

        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limiting_is_retried(self) -> None:
        client = HttpClientService(max_retries=2, base_delay=0, rate_limit_delay=0)
        mock_response = Mock()
        mock_response.status_code = 429
        mock_response.headers = {"retry-after": "0"}

        call_count = 0

        def mock_get(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count <= 2:
                raise httpx.HTTPStatusError("Rate limited", request=Mock(), response=mock_response)
            success_response = Mock()
            success_response.status_code = 200
            success_response.content = b"success"
            success_response.raise_for_status = Mock()
            return success_response

        with patch.object(client._client, "get", side_effect=mock_get):
            response = await client.get("https://api.steampowered.com/rate-limited")
            assert response.status_code == 200
            assert call_count == 3

        await client.close()

    @pytest.mark.asyncio
    async def test_download_size_mismatch(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"x" * 900, headers={"content-length": "1000"})

        client = HttpClientService(max_retries=1, base_delay=0, rate_limit_delay=0, transport=httpx.MockTransport(handler))
        target = tmp_path / "file.bin"

        with pytest.raises(DownloadError) as exc_info:
            await client.download_file("https://example.com/file.bin", target)

        assert exc_info.value.bytes_downloaded == 900
        assert exc_info.value.total_bytes == 1000
        assert not target.exists()
        await client.close()

    @pytest.mark.asyncio
    async def test_download_writes_file(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"payload")

        async with HttpClientService(rate_limit_delay=0, transport=httpx.MockTransport(handler)) as client:
            size = await client.download_file("https://example.com/file.bin", tmp_path / "sub" / "file.bin")

        assert size == 7
        assert (tmp_path / "sub" / "file.bin").read_bytes() == b"payload"


class TestFileSystemErrorHandling:
    def test_invalid_json_reads_as_none(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        assert FileSystemService(tmp_path).read_json(path) is None

    def test_missing_file_reads_as_none(self, tmp_path: Path) -> None:
        service = FileSystemService(tmp_path)
        assert service.read_text(tmp_path / "missing.txt") is None
        assert service.read_json(tmp_path / "missing.json") is None

    def test_unserializable_data_is_rejected_and_file_kept(self, tmp_path: Path) -> None:
        service = FileSystemService(tmp_path)
        path = tmp_path / "data.json"
        service.write_json(path, {"a": 1})

        with pytest.raises(ValueError):
            service.write_json(path, {"bad": object()})

        assert json.loads(path.read_text()) == {"a": 1}
        assert not (tmp_path / "data.json.tmp").exists()

    def test_write_failure_cleans_up_temp_file(self, tmp_path: Path) -> None:
        service = FileSystemService(tmp_path)
        path = tmp_path / "data.txt"

        with patch.object(Path, "replace", side_effect=PermissionError("denied")):
            with pytest.raises(PermissionError):
                service.write_text(path, "content")

        assert not path.exists()
        assert not (tmp_path / "data.txt.tmp").exists()

    def test_write_uses_lf_line_endings(self, tmp_path: Path) -> None:
        path = tmp_path / "lines.txt"
        FileSystemService(tmp_path).write_text(path, "a\nb\n")
        assert path.read_bytes() == b"a\nb\n"

    def test_move_replaces_destination(self, tmp_path: Path) -> None:
        service = FileSystemService(tmp_path)
        (tmp_path / "a").write_text("new")
        (tmp_path / "b").write_text("old")

        service.move_file(tmp_path / "a", tmp_path / "b")

        assert not (tmp_path / "a").exists()
        assert (tmp_path / "b").read_text() == "new"

    def test_remove_reports_whether_something_was_removed(self, tmp_path: Path) -> None:
        service = FileSystemService(tmp_path)
        (tmp_path / "dir").mkdir()
        (tmp_path / "dir" / "f").write_text("x")

        assert service.remove_tree(tmp_path / "dir")
        assert not service.remove_tree(tmp_path / "dir")
        assert not service.remove_file(tmp_path / "missing")


class TestAppErrors:
    def test_sync_error_is_recoverable_warning(self) -> None:
        error = SyncError("failed", app_type="game", url="https://x", last_app_id=10, original_error=ValueError("bad"))

        assert error.recoverable
        assert error.severity == ErrorSeverity.WARNING
        assert error.category == ErrorCategory.SYNC
        assert "Cursor: 10" in error.technical_details
        assert "ValueError" in error.technical_details

    def test_storage_error_is_fatal(self) -> None:
        error = StorageError("failed", database_path="steamapps.db")
        assert not error.recoverable
        assert error.category == ErrorCategory.STORAGE

    def test_provisioning_error_lists_failed_entries(self) -> None:
        error = ProvisioningError("failed", stage="extract", failed_entries=["a.dll", "b.dll"])
        assert "a.dll, b.dll" in error.technical_details
        assert error.failed_entries == ["a.dll", "b.dll"]

    def test_swap_error_suggests_running_update(self) -> None:
        error = ProvisioningError("missing", stage="swap")
        assert "Run the emulator update first" in error.suggested_actions

    def test_app_errors_pass_through_unchanged(self) -> None:
        service = ErrorHandlingService()
        error = ConfigError("cannot write", path="/games/x")

        friendly = service.handle_error(error, operation="apply", component="cli")

        assert friendly.message == "cannot write"
        assert friendly.category == ErrorCategory.CONFIGURATION
        assert service.get_recent_errors() == [error]

    def test_user_message_includes_suggestions(self) -> None:
        service = ErrorHandlingService()
        friendly = service.handle_error(SyncError("Catalog update failed"), operation="sync", component="cli")

        message = service.create_user_message(friendly)

        assert message.startswith("Catalog update failed")
        assert "Suggested actions:" in message
        assert service.create_user_message(friendly, include_suggestions=False) == "Catalog update failed"

    @pytest.mark.parametrize("error,category", [
        (httpx.ConnectError("refused"), ErrorCategory.NETWORK),
        (PermissionError("denied"), ErrorCategory.FILE_SYSTEM),
        (json.JSONDecodeError("bad", "doc", 0), ErrorCategory.VALIDATION),
        (ValueError("bad value"), ErrorCategory.VALIDATION),
        (RuntimeError("boom"), ErrorCategory.UNEXPECTED),
    ])
    def test_standard_exceptions_are_converted(self, error: Exception, category: ErrorCategory) -> None:
        friendly = ErrorHandlingService().handle_error(error, operation="op", component="test")
        assert friendly.category == category

    @given(count=st.integers(min_value=1, max_value=30), limit=st.integers(min_value=1, max_value=10))
    def test_history_is_bounded(self, count: int, limit: int) -> None:
        service = ErrorHandlingService(max_history_size=limit)
        for i in range(count):
            service.handle_error(AppError(f"error {i}"), operation="op", component="test")

        recent = service.get_recent_errors(count=100)
        assert len(recent) == min(count, limit)
        assert recent[-1].message == f"error {count - 1}"
        assert sum(service.get_error_count_by_category().values()) == min(count, limit)


class TestFileSystemHelpers:
    def test_copy_requires_source(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            FileSystemService(tmp_path).copy_file(tmp_path / "missing.dll", tmp_path / "out.dll")

    def test_copy_creates_parent_directories(self, tmp_path: Path) -> None:
        (tmp_path / "a.dll").write_bytes(b"dll")
        FileSystemService(tmp_path).copy_file(tmp_path / "a.dll", tmp_path / "x" / "b.dll")
        assert (tmp_path / "x" / "b.dll").read_bytes() == b"dll"

    def test_write_permission_checks_nearest_existing_parent(self, tmp_path: Path) -> None:
        service = FileSystemService(tmp_path)
        with patch("goldberg_manager.services.filesystem.os.access", return_value=False) as access:
            assert not service.check_write_permission(tmp_path / "new" / "deeper")
        access.assert_called_once_with(tmp_path, os.W_OK)
