"""
Collaborators the engine calls out to: build verification and image search,
plus the human-readable activity label for a turn.

Collaborator failures are reported back to the model as ``{success: False,
error}`` payloads rather than raised, so the debug loop can react to them.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import httpx

from ..errors import ValidationError
from .file_system import FileSystemSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.output is not None:
            payload["output"] = self.output
        if self.error is not None:
            payload["error"] = self.error
        return payload


BuildVerifier = Callable[[FileSystemSnapshot], BuildResult]
ImageSearch = Callable[[str, Optional[str]], Dict[str, Any]]


class NpmBuildRunner:
    """Materialize the snapshot in a temp dir and run ``npm install`` + ``npm run build``."""

    def __init__(self, npm: str = "npm", timeout: float = 600.0) -> None:
        self.npm = npm
        self.timeout = timeout

    def _run(self, args: Sequence[str], cwd: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.npm, *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def __call__(self, file_system: FileSystemSnapshot) -> BuildResult:
        if shutil.which(self.npm) is None:
            return BuildResult(success=False, error=f"'{self.npm}' is not available in the verification environment.")
        with tempfile.TemporaryDirectory(prefix="agentic-bridge-build-") as workdir:
            try:
                file_system.write_to(workdir)
            except ValidationError as exc:
                return BuildResult(success=False, error=exc.message)
            try:
                install = self._run(["install"], workdir)
                if install.returncode != 0:
                    return BuildResult(
                        success=False,
                        error=f"'npm install' failed in verification environment.\n{install.stdout}{install.stderr}",
                    )
                build = self._run(["run", "build"], workdir)
            except subprocess.TimeoutExpired as exc:
                return BuildResult(success=False, error=f"Verification timed out after {exc.timeout}s.")
            except OSError as exc:
                return BuildResult(success=False, error=f"Could not run '{self.npm}': {exc}")
        if build.returncode == 0:
            return BuildResult(success=True, output="Build succeeded.")
        return BuildResult(
            success=False,
            error=f"Build failed with exit code {build.returncode}.",
            output=f"{build.stdout}{build.stderr}",
        )


class PackageJsonBuildVerifier:
    """Pre-flight checks on package.json, then an optional real build runner.

    Without a runner only the pre-flight checks run.
    """

    def __init__(self, runner: Optional[BuildVerifier] = None) -> None:
        self.runner = runner

    def __call__(self, file_system: FileSystemSnapshot) -> BuildResult:
        content = file_system.get("package.json")
        if content is None:
            return BuildResult(success=False, error="No package.json found. Cannot verify.")
        try:
            manifest = json.loads(content)
        except ValueError as exc:
            return BuildResult(success=False, error=f"package.json is not valid JSON: {exc}")
        scripts = manifest.get("scripts") if isinstance(manifest, dict) else None
        if not isinstance(scripts, dict) or not scripts.get("build"):
            return BuildResult(success=False, error="No 'build' script found in package.json. Cannot verify.")
        if self.runner is None:
            return BuildResult(success=True, output="Pre-flight checks passed.")
        return self.runner(file_system)


class PexelsImageSearch:
    """Single-photo lookup against the Pexels search API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.pexels.com/v1",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get(self, params: Mapping[str, Any]) -> httpx.Response:
        url = f"{self.base_url}/search"
        headers = {"Authorization": self.api_key or ""}
        if self._client is not None:
            return self._client.get(url, params=params, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(url, params=params, headers=headers)

    def __call__(self, query: str, orientation: Optional[str] = None) -> Dict[str, Any]:
        if not self.api_key:
            return {"success": False, "error": "Pexels API key is missing."}
        params = {"query": query, "orientation": orientation or "landscape", "per_page": 1}
        try:
            response = self._get(params)
        except httpx.HTTPError as exc:
            logger.warning("Pexels search failed: %s", exc)
            return {"success": False, "error": str(exc) or "Unknown error calling Pexels API."}
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = {}

        if response.status_code != 200:
            return {
                "success": False,
                "error": data.get("error") or f"Pexels API request failed with status {response.status_code}",
            }
        photos = data.get("photos")
        if not isinstance(photos, list) or not photos or not isinstance(photos[0], dict):
            return {"success": False, "error": f'No photos found for query: "{query}"'}
        photo = photos[0]
        src = photo.get("src") if isinstance(photo.get("src"), dict) else {}
        return {
            "success": True,
            "imageUrl": src.get("large2x") or src.get("original"),
            "altText": photo.get("alt"),
            "photographer": photo.get("photographer"),
            "photographerUrl": photo.get("photographer_url"),
            "photoUrl": photo.get("url"),
        }


# Highest priority first.
_ACTIVITY_LABELS = (
    (frozenset({"run_build_and_lint"}), "Verifying the build..."),
    (frozenset({"create_or_update_files", "delete_file"}), "Writing code..."),
    (frozenset({"search_pexels_for_images"}), "Searching for images..."),
    (frozenset({"plan_steps"}), "Creating a plan..."),
    (frozenset({"read_file", "list_files"}), "Reviewing the files..."),
)


def describe_turn_activity(tool_names: Sequence[str]) -> str:
    names = set(tool_names)
    for group, label in _ACTIVITY_LABELS:
        if names & group:
            return label
    return "Thinking..."


__all__ = [
    "BuildResult",
    "BuildVerifier",
    "ImageSearch",
    "NpmBuildRunner",
    "PackageJsonBuildVerifier",
    "PexelsImageSearch",
    "describe_turn_activity",
]
