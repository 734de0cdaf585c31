import json

import httpx
import pytest

from agentic_bridge.workflow import (
    BuildResult,
    FileSystemSnapshot,
    NpmBuildRunner,
    PackageJsonBuildVerifier,
    PexelsImageSearch,
    describe_turn_activity,
)


def _snapshot(manifest):
    files = {"src/main.tsx": "x"}
    if manifest is not None:
        files["package.json"] = manifest if isinstance(manifest, str) else json.dumps(manifest)
    return FileSystemSnapshot(files)


@pytest.mark.parametrize(
    "manifest,error",
    [
        (None, "No package.json found. Cannot verify."),
        ("{not json", "package.json is not valid JSON"),
        ({"scripts": {"dev": "vite"}}, "No 'build' script found in package.json. Cannot verify."),
    ],
)
def test_preflight_failures(manifest, error):
    result = PackageJsonBuildVerifier()(_snapshot(manifest))
    assert result.success is False
    assert result.error.startswith(error)


def test_preflight_success_and_runner_delegation():
    manifest = {"scripts": {"build": "vite build"}}
    assert PackageJsonBuildVerifier()(_snapshot(manifest)).to_payload() == {
        "success": True,
        "output": "Pre-flight checks passed.",
    }

    seen = []

    def runner(file_system):
        seen.append(file_system.paths())
        return BuildResult(success=False, error="Build failed with exit code 2.")

    result = PackageJsonBuildVerifier(runner)(_snapshot(manifest))
    assert result.error == "Build failed with exit code 2."
    assert seen == [["package.json", "src/main.tsx"]]


def _pexels(handler, api_key="pk"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return PexelsImageSearch(api_key, client=client)


def test_pexels_success():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(
            200,
            json={
                "photos": [
                    {
                        "url": "https://www.pexels.com/photo/1",
                        "alt": "Plate of sushi",
                        "photographer": "Jo",
                        "photographer_url": "https://www.pexels.com/@jo",
                        "src": {"original": "https://images.pexels.com/o.jpg", "large2x": "https://images.pexels.com/l.jpg"},
                    }
                ]
            },
        )

    result = _pexels(handler)("sushi", None)
    assert seen == {"params": {"query": "sushi", "orientation": "landscape", "per_page": "1"}, "auth": "pk"}
    assert result == {
        "success": True,
        "imageUrl": "https://images.pexels.com/l.jpg",
        "altText": "Plate of sushi",
        "photographer": "Jo",
        "photographerUrl": "https://www.pexels.com/@jo",
        "photoUrl": "https://www.pexels.com/photo/1",
    }


def test_pexels_failures_are_payloads():
    assert _pexels(lambda r: httpx.Response(200), api_key=None)("x") == {
        "success": False,
        "error": "Pexels API key is missing.",
    }
    assert _pexels(lambda r: httpx.Response(200, json={"photos": []}))("zzz") == {
        "success": False,
        "error": 'No photos found for query: "zzz"',
    }
    assert _pexels(lambda r: httpx.Response(403, json={"error": "Forbidden"}))("x")["error"] == "Forbidden"
    assert _pexels(lambda r: httpx.Response(502, text="bad gateway"))("x")["error"] == (
        "Pexels API request failed with status 502"
    )

    def boom(request):
        raise httpx.ReadTimeout("timed out")

    assert _pexels(boom)("x") == {"success": False, "error": "timed out"}


@pytest.mark.parametrize(
    "names,label",
    [
        (["plan_steps", "create_or_update_files", "run_build_and_lint"], "Verifying the build..."),
        (["delete_file", "plan_steps"], "Writing code..."),
        (["search_pexels_for_images", "read_file"], "Searching for images..."),
        (["plan_steps"], "Creating a plan..."),
        (["list_files"], "Reviewing the files..."),
        (["chat"], "Thinking..."),
        ([], "Thinking..."),
    ],
)
def test_describe_turn_activity(names, label):
    assert describe_turn_activity(names) == label


def test_pexels_non_object_body_is_a_payload():
    assert _pexels(lambda r: httpx.Response(200, json=[]))("x") == {
        "success": False,
        "error": 'No photos found for query: "x"',
    }
    assert _pexels(lambda r: httpx.Response(500, json=["oops"]))("x")["error"] == (
        "Pexels API request failed with status 500"
    )


def test_npm_runner_rejects_paths_outside_workdir(monkeypatch):
    monkeypatch.setattr("agentic_bridge.workflow.collaborators.shutil.which", lambda name: "/usr/bin/npm")
    ran = []
    monkeypatch.setattr("agentic_bridge.workflow.collaborators.subprocess.run", lambda *a, **kw: ran.append(a))

    result = NpmBuildRunner()(FileSystemSnapshot({"/src/App.tsx": "x"}))
    assert result.success is False
    assert "/src/App.tsx" in result.error
    assert ran == []


def test_npm_runner_os_error_is_a_failed_build(monkeypatch):
    monkeypatch.setattr("agentic_bridge.workflow.collaborators.shutil.which", lambda name: "/usr/bin/npm")

    def missing(*args, **kwargs):
        raise PermissionError("npm: permission denied")

    monkeypatch.setattr("agentic_bridge.workflow.collaborators.subprocess.run", missing)
    result = NpmBuildRunner()(FileSystemSnapshot({"package.json": "{}"}))
    assert result.success is False
    assert "permission denied" in result.error
