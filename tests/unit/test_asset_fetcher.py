"""
Tests for AssetFetcher: atomic downloads, retry behaviour, asset naming.
"""

import os
from unittest.mock import patch

import pytest
import requests

from conftest import FakeResponse
from streamfeed.database.models import AssetRef
from streamfeed.ingestion.asset_fetcher import ASSET_NAME_MAP, load_asset_name_map, unique_asset_names
from streamfeed.utils.exceptions import TransportError, WriteError

URL = "https://cdn.example.com/files/report.xml"


def _leftover_parts(directory):
    return [p for p in directory.iterdir() if p.name.endswith(".part")]


class TestFetchToFile:

    def test_downloads_complete_file(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = b"<article><title>T</title></article>"
        dest = tmp_path / "out" / "doc.xml"

        result = asset_fetcher.fetch_to_file(URL, dest)

        assert result == dest
        assert dest.read_bytes() == b"<article><title>T</title></article>"
        assert _leftover_parts(dest.parent) == []

    def test_interrupted_stream_leaves_no_file(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = FakeResponse(200, b"0123456789abcdef", chunk_size=4, fail_after=2)
        dest = tmp_path / "doc.xml"

        with pytest.raises(TransportError):
            asset_fetcher.fetch_to_file(URL, dest)

        assert not dest.exists()
        assert _leftover_parts(tmp_path) == []

    def test_interrupted_redownload_keeps_previous_file(self, asset_fetcher, http_session, tmp_path):
        dest = tmp_path / "doc.xml"
        dest.write_bytes(b"previous complete copy")
        http_session.resources[URL] = FakeResponse(200, b"0123456789abcdef", chunk_size=4, fail_after=1)

        with pytest.raises(TransportError):
            asset_fetcher.fetch_to_file(URL, dest)

        assert dest.read_bytes() == b"previous complete copy"

    def test_write_failure_leaves_no_file(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = b"payload"
        dest = tmp_path / "doc.xml"

        with patch("streamfeed.ingestion.asset_fetcher.os.replace", side_effect=OSError(28, "No space left on device")):
            with pytest.raises(WriteError):
                asset_fetcher.fetch_to_file(URL, dest)

        assert not dest.exists()
        assert _leftover_parts(tmp_path) == []

    def test_write_failure_is_not_retried(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = b"payload"

        with patch("streamfeed.ingestion.asset_fetcher.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(WriteError):
                asset_fetcher.fetch_to_file(URL, tmp_path / "doc.xml")

        assert http_session.requests == [URL]

    def test_transient_failure_is_retried(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = [requests.ConnectionError("reset"), b"second time lucky"]
        dest = tmp_path / "doc.xml"

        asset_fetcher.fetch_to_file(URL, dest)

        assert dest.read_bytes() == b"second time lucky"
        assert len(http_session.requests) == 2

    def test_http_not_found_is_not_retried(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = FakeResponse(404)

        with pytest.raises(TransportError) as exc_info:
            asset_fetcher.fetch_to_file(URL, tmp_path / "doc.xml")

        assert exc_info.value.recoverable is False
        assert len(http_session.requests) == 1

    def test_server_error_exhausts_retries(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = FakeResponse(503)

        with pytest.raises(TransportError):
            asset_fetcher.fetch_to_file(URL, tmp_path / "doc.xml")

        assert len(http_session.requests) == 2

    def test_timeout_maps_to_transport_error(self, asset_fetcher, http_session, tmp_path):
        http_session.resources[URL] = requests.Timeout("slow")

        with pytest.raises(TransportError):
            asset_fetcher.fetch_to_file(URL, tmp_path / "doc.xml")


class TestFetchAssets:

    def test_each_asset_isolated(self, asset_fetcher, http_session, tmp_path):
        assets = [
            AssetRef(url="https://cdn.example.com/a.jpg", filename="a.jpg"),
            AssetRef(url="https://cdn.example.com/missing.jpg", filename="missing.jpg"),
            AssetRef(url="https://cdn.example.com/c.png", filename="c.png"),
        ]
        http_session.resources["https://cdn.example.com/a.jpg"] = b"A"
        http_session.resources["https://cdn.example.com/c.png"] = b"C"

        report = asset_fetcher.fetch_assets(assets, tmp_path / "assets")

        assert [p.name for p in report.fetched] == ["a.jpg", "c.png"]
        assert [asset.filename for asset, _ in report.failures] == ["missing.jpg"]
        assert not (tmp_path / "assets" / "missing.jpg").exists()
        assert not report.complete

    def test_concurrent_downloads(self, asset_fetcher, http_session, tmp_path):
        assets = [AssetRef(url=f"https://cdn.example.com/{i}.jpg", filename=f"{i}.jpg") for i in range(6)]
        for i in range(6):
            http_session.resources[f"https://cdn.example.com/{i}.jpg"] = str(i).encode() * 10

        report = asset_fetcher.fetch_assets(assets, tmp_path, max_workers=3)

        assert report.complete
        assert [p.name for p in report.fetched] == [f"{i}.jpg" for i in range(6)]
        assert (tmp_path / "4.jpg").read_bytes() == b"4" * 10

    def test_colliding_names_resolved_in_order(self, asset_fetcher, http_session, tmp_path):
        assets = [
            AssetRef(url="https://cdn.example.com/x/photo.jpg", filename="photo.jpg"),
            AssetRef(url="https://cdn.example.com/y/photo.jpg", filename="photo.jpg"),
        ]
        http_session.resources["https://cdn.example.com/x/photo.jpg"] = b"X"
        http_session.resources["https://cdn.example.com/y/photo.jpg"] = b"Y"

        asset_fetcher.fetch_assets(assets, tmp_path)

        assert (tmp_path / "photo.jpg").read_bytes() == b"X"
        assert (tmp_path / "photo-1.jpg").read_bytes() == b"Y"
        assert load_asset_name_map(tmp_path) == {}

    def test_renamed_assets_recorded_in_name_map(self, asset_fetcher, http_session, tmp_path):
        assets = [
            AssetRef(url="https://cdn.example.com/1", filename="my photo.jpg"),
            AssetRef(url="https://cdn.example.com/2", filename="Chart.png"),
            AssetRef(url="https://cdn.example.com/3", filename="chart.png"),
        ]
        for asset in assets:
            http_session.resources[asset.url] = b"data"

        report = asset_fetcher.fetch_assets(assets, tmp_path)

        assert [p.name for p in report.fetched] == ["my_photo.jpg", "Chart.png", "chart-1.png"]
        assert load_asset_name_map(tmp_path) == {"my photo.jpg": "my_photo.jpg", "chart.png": "chart-1.png"}

    def test_no_name_map_without_renames(self, asset_fetcher, http_session, tmp_path):
        http_session.resources["https://cdn.example.com/a.jpg"] = b"A"

        asset_fetcher.fetch_assets([AssetRef(url="https://cdn.example.com/a.jpg", filename="a.jpg")], tmp_path)

        assert not (tmp_path / ASSET_NAME_MAP).exists()


def test_unique_asset_names_sanitizes_remote_names():
    assets = [
        AssetRef(url="https://cdn.example.com/a", filename="../../etc/passwd"),
        AssetRef(url="https://cdn.example.com/b", filename="Photo.JPG"),
        AssetRef(url="https://cdn.example.com/c", filename="photo.jpg"),
    ]

    names = unique_asset_names(assets)

    assert all(os.sep not in name and not name.startswith(".") for name in names)
    assert names[1:] == ["Photo.JPG", "photo-1.jpg"]


def test_filename_from_url(asset_fetcher):
    assert asset_fetcher.filename_from_url("https://cdn.example.com/img/My%20Photo.jpg?x=1") == "My_Photo.jpg"
    fallback = asset_fetcher.filename_from_url("https://cdn.example.com/")
    assert len(fallback) == 12
