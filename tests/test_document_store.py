import pytest
import asyncio
import base64
import json
import subprocess
import httpx
from unittest.mock import patch

from staging_monitor.core.errors import PublishConflict, PublishError, REJECTED, UNAVAILABLE
from staging_monitor.services.document_store import GitHubContentsStore, LocalGitStore

CONTENTS_PATH = "/repos/acme/shop/contents/docs/STAGING-STATUS.md"


def _github_store(handler):
    return GitHubContentsStore(
        github_token="fake",
        repository="https://github.com/acme/shop",
        branch="develop",
        path="docs/STAGING-STATUS.md",
        api_url="https://api.github.com",
        transport=httpx.MockTransport(handler),
    )


def _encoded(text):
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


# ---------------------------------------------------------------------------
# GitHub contents API
# ---------------------------------------------------------------------------
def test_github_read_existing_document():
    def handler(request):
        assert request.url.path == CONTENTS_PATH
        assert request.url.params["ref"] == "develop"
        return httpx.Response(200, json={"encoding": "base64", "content": _encoded("# Report ✅\n"), "sha": "blob1"})

    stored = asyncio.run(_github_store(handler).read())

    assert stored.exists is True
    assert stored.content == "# Report ✅\n"
    assert stored.revision == "blob1"


def test_github_read_missing_document():
    stored = asyncio.run(_github_store(lambda r: httpx.Response(404, json={"message": "Not Found"})).read())
    assert stored.exists is False
    assert stored.revision is None


def test_github_write_passes_revision_and_message():
    seen = {}

    def handler(request):
        assert request.method == "PUT"
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"content": {"sha": "blob2"}, "commit": {"sha": "commit2"}})

    result = asyncio.run(_github_store(handler).write("new body\n", "docs(staging): update [staging-monitor]", "blob1"))

    assert result.status == "published"
    assert result.revision == "blob2"
    assert result.commit_sha == "commit2"
    assert seen["sha"] == "blob1"
    assert seen["branch"] == "develop"
    assert base64.b64decode(seen["content"]).decode() == "new body\n"
    assert "[staging-monitor]" in seen["message"]


def test_github_create_omits_sha():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(201, json={"content": {"sha": "blob1"}, "commit": {"sha": "c1"}})

    asyncio.run(_github_store(handler).write("body", "msg", None))
    assert "sha" not in seen


@pytest.mark.parametrize("status,body", [
    (409, {"message": "docs/STAGING-STATUS.md does not match blob1"}),
    (422, {"message": "Invalid request.\n\n\"sha\" wasn't supplied."}),
])
def test_github_conflicts(status, body):
    store = _github_store(lambda r: httpx.Response(status, json=body))
    with pytest.raises(PublishConflict):
        asyncio.run(store.write("body", "msg", "blob1"))


@pytest.mark.parametrize("status,reason", [(502, UNAVAILABLE), (429, UNAVAILABLE), (403, REJECTED)])
def test_github_write_errors(status, reason):
    store = _github_store(lambda r: httpx.Response(status, json={"message": "nope"}))
    with pytest.raises(PublishError) as exc_info:
        asyncio.run(store.write("body", "msg", "blob1"))
    assert exc_info.value.reason == reason


def test_github_transport_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PublishError) as exc_info:
        asyncio.run(_github_store(handler).read())
    assert exc_info.value.reason == UNAVAILABLE


def test_github_non_utf8_document_is_read_with_replacement():
    latin1 = base64.b64encode("Caf\u00e9".encode("latin-1")).decode("ascii")
    store = _github_store(lambda r: httpx.Response(200, json={"encoding": "base64", "content": latin1, "sha": "b1"}))

    stored = asyncio.run(store.read())

    assert stored.content == "Caf\ufffd"
    assert stored.revision == "b1"


@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"encoding": "base64", "content": "QQ", "sha": "b1"}),
    httpx.Response(200, text="<html>not json</html>"),
    httpx.Response(200, json=["not", "an", "object"]),
])
def test_github_undecodable_document_is_rejected(response):
    with pytest.raises(PublishError) as exc_info:
        asyncio.run(_github_store(lambda r: response).read())
    assert exc_info.value.reason == REJECTED


# ---------------------------------------------------------------------------
# Local git checkout
# ---------------------------------------------------------------------------
class FakeGit:
    """Answers subprocess.run(["git", ...]) calls for LocalGitStore."""

    def __init__(self, head="aaa111", shown=None, staged_changes=True, push_stderr=None):
        self.head = head
        self.shown = shown
        self.staged_changes = staged_changes
        self.push_stderr = push_stderr
        self.calls = []

    def __call__(self, cmd, cwd=None, check=False, capture_output=False, text=False, **kwargs):
        args = cmd[1:]
        self.calls.append(args)
        self.options = kwargs
        verb = next(a for a in args if not a.startswith("-") and "=" not in a)

        def done(code=0, out="", err=""):
            if check and code != 0:
                raise subprocess.CalledProcessError(code, cmd, output=out, stderr=err)
            return subprocess.CompletedProcess(cmd, code, stdout=out, stderr=err)

        if verb == "rev-parse":
            return done(out=("bbb222" if args[-1] == "HEAD" else self.head) + "\n")
        if verb == "show":
            return done(out=self.shown) if self.shown is not None else done(128, err="fatal: path does not exist")
        if verb == "diff":
            return done(1 if self.staged_changes else 0)
        if verb == "push" and self.push_stderr:
            return done(1, err=self.push_stderr)
        return done()

    def verbs(self):
        return [next(a for a in args if not a.startswith("-") and "=" not in a) for args in self.calls]


@pytest.fixture
def git_store(tmp_path):
    return LocalGitStore(workspace=str(tmp_path), branch="develop", path="docs/STAGING-STATUS.md")


def test_git_read_uses_remote_branch(git_store):
    fake = FakeGit(head="aaa111", shown="# Report\n")
    with patch("subprocess.run", side_effect=fake):
        stored = asyncio.run(git_store.read())

    assert stored.exists is True
    assert stored.content == "# Report\n"
    assert stored.revision == "aaa111"
    assert ["show", "origin/develop:docs/STAGING-STATUS.md"] in fake.calls


def test_git_output_is_decoded_leniently(git_store):
    fake = FakeGit(head="aaa111", shown="Caf\ufffd\n")
    with patch("subprocess.run", side_effect=fake):
        stored = asyncio.run(git_store.read())

    assert fake.options == {"encoding": "utf-8", "errors": "replace"}
    assert stored.exists is True
    assert stored.revision == "aaa111"


def test_git_read_missing_file_still_reports_head(git_store):
    with patch("subprocess.run", side_effect=FakeGit(head="aaa111")):
        stored = asyncio.run(git_store.read())
    assert stored.exists is False
    assert stored.revision == "aaa111"


def test_git_write_commits_and_pushes(git_store, tmp_path):
    fake = FakeGit(head="aaa111")
    with patch("subprocess.run", side_effect=fake):
        result = asyncio.run(git_store.write("# Report\n", "docs(staging): update [staging-monitor] [skip ci]", "aaa111"))

    assert result.status == "published"
    assert result.commit_sha == "bbb222"
    assert (tmp_path / "docs" / "STAGING-STATUS.md").read_text(encoding="utf-8") == "# Report\n"
    assert fake.verbs() == ["fetch", "rev-parse", "checkout", "add", "diff", "commit", "push", "rev-parse"]
    commit = next(args for args in fake.calls if "commit" in args)
    assert commit[-1].endswith("[skip ci]")
    assert any(a.startswith("user.name=") for a in commit)


def test_git_write_detects_moved_head(git_store):
    with patch("subprocess.run", side_effect=FakeGit(head="ccc333")):
        with pytest.raises(PublishConflict):
            asyncio.run(git_store.write("body", "msg", "aaa111"))


def test_git_write_with_nothing_staged_is_unchanged(git_store):
    fake = FakeGit(head="aaa111", staged_changes=False)
    with patch("subprocess.run", side_effect=fake):
        result = asyncio.run(git_store.write("body", "msg", "aaa111"))
    assert result.status == "unchanged"
    assert "commit" not in fake.verbs()


def test_git_rejected_push_is_a_conflict(git_store):
    fake = FakeGit(push_stderr="! [rejected]        HEAD -> develop (fetch first)")
    with patch("subprocess.run", side_effect=fake):
        with pytest.raises(PublishConflict):
            asyncio.run(git_store.write("body", "msg", "aaa111"))


def test_git_push_network_failure_is_unavailable(git_store):
    fake = FakeGit(push_stderr="fatal: unable to access 'https://github.com/acme/shop/': Could not resolve host")
    with patch("subprocess.run", side_effect=fake):
        with pytest.raises(PublishError) as exc_info:
            asyncio.run(git_store.write("body", "msg", "aaa111"))
    assert exc_info.value.reason == UNAVAILABLE


def test_git_path_outside_workspace_is_rejected(tmp_path):
    store = LocalGitStore(workspace=str(tmp_path), branch="develop", path="../escape.md")
    with pytest.raises(PublishError) as exc_info:
        asyncio.run(store.write("body", "msg", None))
    assert exc_info.value.reason == REJECTED
