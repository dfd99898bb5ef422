"""Tests for the source-hosting collaborators."""

import base64
import shutil

import httpx
import pytest

from pr_analyst.errors import SourceHostError
from pr_analyst.source_host import GitHubSource, LocalGitSource


def _github(handler, **kwargs):
    client = httpx.Client(
        transport=httpx.MockTransport(handler), base_url="https://api.github.com"
    )
    return GitHubSource("octo", "repo", client=client, **kwargs)


class TestGitHubSource:
    def test_decodes_file_content(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["ref"] = request.url.params.get("ref")
            payload = base64.b64encode(b"print('hi')\n").decode()
            return httpx.Response(
                200, json={"type": "file", "encoding": "base64", "content": payload}
            )

        source = _github(handler, head_ref="feature")
        assert source.get_file_content("src/a.py") == "print('hi')\n"
        assert seen == {"path": "/repos/octo/repo/contents/src/a.py", "ref": "feature"}

    def test_explicit_ref(self):
        refs = []

        def handler(request):
            refs.append(request.url.params.get("ref"))
            return httpx.Response(404, json={"message": "Not Found"})

        source = _github(handler, base_ref="main")
        assert source.get_file_content("gone.py", "main") is None
        assert refs == ["main"]

    def test_directory_is_not_content(self):
        source = _github(lambda request: httpx.Response(200, json=[{"name": "a.py"}]))
        assert source.get_file_content("src") is None

    def test_server_error_raises(self):
        source = _github(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(SourceHostError) as excinfo:
            source.get_file_content("a.py")
        assert excinfo.value.status_code == 502

    def test_non_json_body_raises(self):
        source = _github(
            lambda request: httpx.Response(200, text="<html>proxy login</html>")
        )
        with pytest.raises(SourceHostError) as excinfo:
            source.get_file_content("a.py")
        assert excinfo.value.status_code == 200

    def test_bad_base64_raises(self):
        source = _github(
            lambda request: httpx.Response(
                200, json={"type": "file", "encoding": "base64", "content": "abc"}
            )
        )
        with pytest.raises(SourceHostError):
            source.get_file_content("a.py")

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(SourceHostError):
            _github(handler).get_file_content("a.py")

    def test_token_from_environment(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        with GitHubSource("octo", "repo") as source:
            assert source._client.headers["Authorization"] == "token env-token"

    def test_no_token_no_auth_header(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with GitHubSource("octo", "repo") as source:
            assert "Authorization" not in source._client.headers


class TestLocalGitSource:
    def test_reads_working_tree_for_head(self, tmp_path):
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "new.py").write_text("x = 1\n", encoding="utf-8")
        source = LocalGitSource(tmp_path)
        assert source.get_file_content("pkg/new.py") == "x = 1\n"
        assert source.get_file_content("pkg/new.py", source.head_ref) == "x = 1\n"

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_missing_revision_is_none(self, tmp_path):
        source = LocalGitSource(tmp_path)
        assert source.get_file_content("pkg/old.py", "HEAD~1") is None
