"""Tests for the run command."""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import yaml
from aiohttp import test_utils, web

from osbuild_operator.composer import ComposeStatusValue
from osbuild_operator.config import OperatorConfig
from osbuild_operator.manifest import read_manifests
from osbuild_operator.store import InMemoryStore
from osbuild_operator.tool import osbuild_operator, run

from ..conftest import FakeComposer

MANIFESTS = """\
apiVersion: osbuilder.project-flotta.io/v1alpha1
kind: OSBuildConfigTemplate
metadata:
  name: base
  namespace: default
spec:
  customizations:
    services:
      enabled:
        - sshd
  iso:
    kickstart:
      raw: "network --hostname={{ hostname }}"
  parameters:
    - name: hostname
      defaultValue: localhost
---
apiVersion: osbuilder.project-flotta.io/v1alpha1
kind: OSBuildConfig
metadata:
  name: edge
  namespace: default
spec:
  details:
    distribution: rhel-86
    targetImage:
      architecture: x86_64
      targetImageType: edge-installer
      osTree:
        ref: rhel/8/x86_64/edge
  template:
    osBuildConfigTemplateRef: base
    parameters:
      - name: hostname
        value: edge-1
"""


@pytest.fixture(name="manifests")
def manifests_fixture(tmp_path: Path) -> Path:
    """Write the manifests to a directory."""
    path = tmp_path / "manifests"
    path.mkdir()
    (path / "edge.yaml").write_text(MANIFESTS)
    return path


@pytest.fixture(name="config")
def config_fixture(tmp_path: Path) -> OperatorConfig:
    """Create an operator config that requeues quickly."""
    return OperatorConfig(
        requeue_short=0.01, requeue_long=0.01, repositories_dir=tmp_path
    )


async def _load(manifests: Path) -> InMemoryStore:
    store = InMemoryStore()
    for obj in await read_manifests(manifests):
        await store.create(obj)
    return store


async def test_run_operator(
    manifests: Path, composer: FakeComposer, config: OperatorConfig
) -> None:
    """Test running the controllers until the builds are finished."""
    store = await _load(manifests)
    builds = await run.run_operator(store, composer, config, timeout=5)
    assert [build.name for build in builds] == ["edge-1"]
    assert builds[0].status.iso_url == "https://images.example.com/compose-2"
    assert [request.image_request.image_type for request in composer.requests] == [
        "edge-container",
        "edge-installer",
    ]


async def test_run_operator_timeout(
    manifests: Path,
    composer: FakeComposer,
    config: OperatorConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test that unfinished builds are returned when the timeout expires."""
    composer.default_status = ComposeStatusValue.PENDING
    store = await _load(manifests)
    builds = await run.run_operator(store, composer, config, timeout=0.1)
    assert [build.name for build in builds] == ["edge-1"]
    assert not builds[0].terminal
    assert "Timed out" in caplog.text


@pytest.fixture(name="composer_url")
async def composer_url_fixture() -> AsyncGenerator[str, None]:
    """Run a compose service that finishes every compose immediately."""
    composes: list[dict[str, Any]] = []

    async def post_compose(request: web.Request) -> web.Response:
        composes.append(await request.json())
        return web.json_response({"id": f"compose-{len(composes)}"}, status=201)

    async def get_compose(request: web.Request) -> web.Response:
        compose_id = request.match_info["compose_id"]
        return web.json_response(
            {
                "status": "success",
                "image_status": {
                    "status": "success",
                    "upload_status": {
                        "status": "success",
                        "type": "aws.s3",
                        "options": {"url": f"https://s3.example.com/{compose_id}"},
                    },
                },
            }
        )

    app = web.Application()
    app.router.add_post("/api/image-builder-composer/v2/compose", post_compose)
    app.router.add_get(
        "/api/image-builder-composer/v2/compose/{compose_id}", get_compose
    )
    async with test_utils.TestServer(app) as server:
        yield str(server.make_url("/"))


async def test_run_action(
    manifests: Path,
    composer_url: str,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test the run command against an HTTP compose service."""
    monkeypatch.setenv("REQUEUE_SHORT_SECONDS", "0.01")
    monkeypatch.setenv("REQUEUE_LONG_SECONDS", "0.01")
    monkeypatch.setenv("REPOSITORIES_DIR", str(tmp_path))
    output = tmp_path / "builds.yaml"

    await run.RunAction().run(
        path=[manifests],
        composer_url=composer_url,
        timeout=5,
        output_file=str(output),
    )

    docs = list(yaml.safe_load_all(output.read_text()))
    assert len(docs) == 1
    doc = docs[0]
    assert doc["kind"] == "OSBuild"
    assert doc["metadata"]["name"] == "edge-1"
    assert doc["spec"]["kickstart"] == {"name": "edge-1"}
    assert doc["spec"]["details"]["customizations"] == {
        "services": {"enabled": ["sshd"]}
    }
    assert doc["status"]["containerUrl"] == "https://s3.example.com/compose-1"
    assert doc["status"]["isoUrl"] == "https://s3.example.com/compose-2"
    assert [condition["type"] for condition in doc["status"]["conditions"]] == [
        "startedContainerBuild",
        "containerBuildDone",
        "startedIsoBuild",
        "isoBuildDone",
    ]


def test_parse_args() -> None:
    """Test the command line arguments of the run command."""
    args = osbuild_operator._make_parser().parse_args(
        ["run", "a.yaml", "manifests/", "--composer-url", "http://composer:8080"]
    )
    assert args.cls is run.RunAction
    assert args.path == [Path("a.yaml"), Path("manifests/")]
    assert args.composer_url == "http://composer:8080"
    assert args.timeout == run.DEFAULT_TIMEOUT
