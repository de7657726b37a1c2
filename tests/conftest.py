"""Shared fixtures for osbuild-operator tests."""

import pytest

from osbuild_operator.composer import (
    Composer,
    ComposeId,
    ComposeRequest,
    ComposeStatus,
    ComposeStatusValue,
    ImageStatus,
    UploadStatus,
)
from osbuild_operator.exceptions import ComposerException
from osbuild_operator.store import InMemoryStore


class FakeComposer(Composer):
    """Compose service that records requests and returns canned statuses."""

    def __init__(self) -> None:
        self.requests: list[ComposeRequest] = []
        self.statuses: dict[str, ComposeStatusValue] = {}
        self.default_status = ComposeStatusValue.SUCCESS
        self.upload = True
        self.post_error: ComposerException | None = None
        self.status_error: ComposerException | None = None
        self.closed = False

    async def post_compose(self, request: ComposeRequest) -> ComposeId:
        if self.post_error is not None:
            raise self.post_error
        self.requests.append(request)
        return ComposeId(id=f"compose-{len(self.requests)}", kind="ComposeId")

    async def get_compose_status(self, compose_id: str) -> ComposeStatus:
        if self.status_error is not None:
            raise self.status_error
        status = self.statuses.get(compose_id, self.default_status)
        if not self.upload:
            return ComposeStatus(status=status)
        return ComposeStatus(
            status=status,
            image_status=ImageStatus(
                status=str(status),
                upload_status=UploadStatus(
                    status=str(status),
                    type="aws.s3",
                    options={"url": f"https://images.example.com/{compose_id}"},
                ),
            ),
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStore:
    """Create an empty store."""
    return InMemoryStore()


@pytest.fixture(name="composer")
def composer_fixture() -> FakeComposer:
    """Create a fake compose service that succeeds every compose."""
    return FakeComposer()
