"""
VCS Status Publisher Tests
"""

import json

import httpx

from human_attest.vcs_status import STATUS_CONTEXT, GitHubStatusPublisher, LoggingStatusPublisher

from tests.conftest import async_test


def github_handler(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "POST" and request.url.path.endswith("/comments"):
            return httpx.Response(201, json={"id": 77, "html_url": "https://github.com/c/77"})
        return httpx.Response(201, json={})
    return handler


def make_publisher(requests, sha="abc123def456"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(github_handler(requests)))
    return GitHubStatusPublisher("ghp_test", "octo/widgets", sha, client=client)


class TestGitHubStatusPublisher:
    @async_test
    async def test_pending_sets_status_and_creates_comment(self):
        requests = []
        publisher = make_publisher(requests)
        await publisher.publish_pending("https://approve.example.com/?repo=octo%2Fwidgets")

        status, comment = requests
        assert status.url.path == "/repos/octo/widgets/statuses/abc123def456"
        body = json.loads(status.content)
        assert body["state"] == "pending"
        assert body["context"] == STATUS_CONTEXT
        assert body["target_url"].startswith("https://approve.example.com/")
        assert status.headers["Authorization"] == "token ghp_test"

        assert comment.url.path == "/repos/octo/widgets/commits/abc123def456/comments"
        assert "Human Approval Required" in json.loads(comment.content)["body"]
        assert publisher.comment_id == 77

    @async_test
    async def test_success_updates_comment_in_place(self, attestation):
        requests = []
        publisher = make_publisher(requests)
        await publisher.publish_pending("https://approve.example.com/")
        await publisher.publish_success(attestation)

        status, patch = requests[2:]
        assert json.loads(status.content)["state"] == "success"
        assert patch.method == "PATCH"
        assert patch.url.path == "/repos/octo/widgets/comments/77"
        assert attestation.attestation_hash in json.loads(patch.content)["body"]

    @async_test
    async def test_failure_without_comment_only_sets_status(self):
        requests = []
        publisher = make_publisher(requests)
        await publisher.publish_failure("Timed out after 30 minutes")

        assert len(requests) == 1
        body = json.loads(requests[0].content)
        assert body["state"] == "failure"
        assert body["description"] == "Timed out after 30 minutes"

    @async_test
    async def test_long_descriptions_truncated(self):
        requests = []
        await make_publisher(requests).publish_failure("x" * 500)
        assert len(json.loads(requests[0].content)["description"]) == 140


class TestLoggingStatusPublisher:
    @async_test
    async def test_records_events(self, attestation):
        publisher = LoggingStatusPublisher()
        await publisher.publish_pending("https://approve.example.com/")
        await publisher.publish_success(attestation)
        await publisher.publish_failure("nope")
        assert publisher.events == [
            ("pending", "https://approve.example.com/"),
            ("success", attestation.attestation_hash),
            ("failure", "nope"),
        ]
