"""
Unit tests for download module.

Tests download functionality with mocked network requests.
"""

from unittest.mock import patch

import threading

import pytest
import responses

from xwinkit.core.download import (
    DownloadError,
    DownloadProgress,
    download_file,
    fetch_json,
    format_progress,
)
from xwinkit.core.exceptions import OperationCancelled


@pytest.mark.unit
class TestDownloadFile:
    """Test download_file function."""

    @responses.activate
    def test_simple_download(self, tmp_path):
        url = "https://example.com/sysroot.tar.xz"
        content = b"archive bytes"
        destination = tmp_path / "work" / "sysroot.tar.xz"

        responses.add(
            responses.GET,
            url,
            body=content,
            status=200,
            headers={"content-length": str(len(content))},
        )

        result = download_file(url, destination)

        assert result == destination
        assert destination.read_bytes() == content

    @responses.activate
    def test_headers_are_sent(self, tmp_path):
        url = "https://example.com/file"
        responses.add(responses.GET, url, body=b"x", status=200)

        download_file(url, tmp_path / "file", headers={"Authorization": "Bearer t"})

        assert responses.calls[0].request.headers["Authorization"] == "Bearer t"

    @responses.activate
    def test_progress_callback_reports_completion(self, tmp_path):
        url = "https://example.com/file"
        content = b"x" * 1000
        responses.add(
            responses.GET,
            url,
            body=content,
            status=200,
            headers={"content-length": str(len(content))},
        )
        reports = []

        download_file(url, tmp_path / "file", progress_callback=reports.append)

        assert reports
        assert reports[-1].received == 1000
        assert reports[-1].percentage == pytest.approx(100.0)

    @responses.activate
    def test_retries_then_fails(self, tmp_path):
        url = "https://example.com/file"
        responses.add(responses.GET, url, status=500)

        with patch("xwinkit.core.download.time.sleep"):
            with pytest.raises(DownloadError, match="after 3 attempts"):
                download_file(url, tmp_path / "file")

        assert len(responses.calls) == 3

    @responses.activate
    def test_retry_succeeds(self, tmp_path):
        url = "https://example.com/file"
        responses.add(responses.GET, url, status=503)
        responses.add(responses.GET, url, body=b"ok", status=200)

        with patch("xwinkit.core.download.time.sleep"):
            download_file(url, tmp_path / "file")

        assert (tmp_path / "file").read_bytes() == b"ok"

    @responses.activate
    def test_cancelled_download_stops(self, tmp_path):
        url = "https://example.com/sysroot.tar.xz"
        responses.add(responses.GET, url, body=b"x" * 1024, status=200)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelled):
            download_file(url, tmp_path / "file", cancel=cancel)

    @responses.activate
    def test_cancel_during_backoff_stops_retrying(self, tmp_path):
        url = "https://example.com/file"
        responses.add(responses.GET, url, status=503)
        cancel = threading.Event()

        backoff = patch(
            "xwinkit.core.download.time.sleep", side_effect=lambda _: cancel.set()
        )
        with backoff:
            with pytest.raises(OperationCancelled):
                download_file(url, tmp_path / "file", cancel=cancel)

        assert len(responses.calls) == 1

    @responses.activate
    def test_client_error_is_not_retried(self, tmp_path):
        url = "https://example.com/missing"
        responses.add(responses.GET, url, status=404)

        with pytest.raises(DownloadError, match="missing"):
            download_file(url, tmp_path / "file")

        assert len(responses.calls) == 1

    def test_empty_url(self, tmp_path):
        with pytest.raises(ValueError):
            download_file("", tmp_path / "file")


@pytest.mark.unit
class TestFetchJson:
    """Test fetch_json function."""

    @responses.activate
    def test_returns_document(self):
        url = "https://api.example.com/release"
        responses.add(responses.GET, url, json={"assets": []}, status=200)

        assert fetch_json(url) == {"assets": []}

    @responses.activate
    def test_http_error(self):
        url = "https://api.example.com/release"
        responses.add(responses.GET, url, status=404)

        with pytest.raises(DownloadError, match="failed"):
            fetch_json(url)

    @responses.activate
    def test_invalid_json(self):
        url = "https://api.example.com/release"
        responses.add(responses.GET, url, body="<html>", status=200)

        with pytest.raises(DownloadError):
            fetch_json(url)


@pytest.mark.unit
class TestFormatProgress:
    """Test format_progress function."""

    def test_with_total(self):
        progress = DownloadProgress(52428800, 104857600, 50.0)

        assert format_progress(progress) == "50.0/100.0 MB (50%) at 1.0 MB/s"

    def test_unknown_total(self):
        progress = DownloadProgress(3 * 1024 * 1024, 0, 0.0)

        assert progress.percentage == 0.0
        assert format_progress(progress) == "3.0 MB at 0.0 MB/s"

    def test_str_uses_format(self):
        progress = DownloadProgress(1024, 2048, 1.0)

        assert str(progress) == format_progress(progress)
