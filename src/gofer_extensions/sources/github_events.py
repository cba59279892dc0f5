"""Typed GitHub webhook payloads and the metadata each one contributes to a run."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

# Every event name a subscription may filter on.
EVENTS = frozenset(
    {
        "branch_protection_rule",
        "check_run",
        "check_suite",
        "create",
        "delete",
        "deployment",
        "deployment_status",
        "discussion",
        "discussion_comment",
        "fork",
        "gollum",
        "issue_comment",
        "issues",
        "label",
        "merge_group",
        "milestone",
        "page_build",
        "project",
        "project_card",
        "project_column",
        "public",
        "pull_request",
        "pull_request_with_check",
        "pull_request_comment",
        "pull_request_review",
        "pull_request_review_comment",
        "pull_request_target",
        "push",
        "registry_package",
        "release",
        "repository_dispatch",
        "schedule",
        "status",
        "watch",
        "workflow_call",
        "workflow_dispatch",
        "workflow_run",
    }
)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class User(_Payload):
    login: str = ""
    name: str | None = None
    email: str | None = None


class Repository(_Payload):
    full_name: str
    name: str = ""
    owner: User = User()


class CommitIdentity(_Payload):
    name: str = ""
    email: str = ""
    username: str = ""


class Commit(_Payload):
    id: str = ""
    author: CommitIdentity = CommitIdentity()
    committer: CommitIdentity = CommitIdentity()


class PullRequestHead(_Payload):
    ref: str = ""
    sha: str = ""


class PullRequest(_Payload):
    number: int = 0
    head: PullRequestHead = PullRequestHead()
    user: User = User()


class Release(_Payload):
    tag_name: str = ""
    target_commitish: str = ""
    author: User = User()
    created_at: str | None = None
    published_at: str | None = None


class RepositoryEvent(_Payload):
    """Any recognised event; carries only the fields every webhook shares."""

    action: str | None = None
    repository: Repository

    def base_metadata(self, event: str) -> dict[str, str]:
        return {
            "EVENT": event,
            "ACTION": self.action or "",
            "REPOSITORY": self.repository.full_name,
        }

    def metadata(self, event: str) -> dict[str, str]:
        return self.base_metadata(event)


class PushEvent(RepositoryEvent):
    ref: str = ""
    head_commit: Commit | None = None

    def metadata(self, event: str) -> dict[str, str]:
        commit = self.head_commit or Commit()
        return {
            **self.base_metadata(event),
            "REF": self.ref,
            "HEAD_COMMIT_ID": commit.id,
            "HEAD_COMMIT_AUTHOR_NAME": commit.author.name,
            "HEAD_COMMIT_AUTHOR_EMAIL": commit.author.email,
            "HEAD_COMMIT_AUTHOR_USERNAME": commit.author.username,
            "HEAD_COMMIT_COMMITTER_NAME": commit.committer.name,
            "HEAD_COMMIT_COMMITTER_EMAIL": commit.committer.email,
            "HEAD_COMMIT_COMMITTER_USERNAME": commit.committer.username,
        }


class PullRequestEvent(RepositoryEvent):
    pull_request: PullRequest

    def metadata(self, event: str) -> dict[str, str]:
        pr = self.pull_request
        return {
            # Checked and unchecked pull request subscriptions see the same event name.
            **self.base_metadata("pull_request"),
            "PULLREQUEST_NUMBER": str(pr.number),
            "PULLREQUEST_HEAD_REF": pr.head.ref,
            "PULLREQUEST_BRANCH": pr.head.ref,
            "PULLREQUEST_HEAD_SHA": pr.head.sha,
            "PULLREQUEST_AUTHOR_USERNAME": pr.user.login,
            "PULLREQUEST_AUTHOR_EMAIL": pr.user.email or "",
            "PULLREQUEST_AUTHOR_NAME": pr.user.name or "",
        }


class ReleaseEvent(RepositoryEvent):
    release: Release

    def metadata(self, event: str) -> dict[str, str]:
        release = self.release
        return {
            **self.base_metadata(event),
            "RELEASE_TAG_NAME": release.tag_name,
            "RELEASE_TARGET_COMMITISH": release.target_commitish,
            "RELEASE_AUTHOR_LOGIN": release.author.login,
            "RELEASE_CREATED_AT": release.created_at or "",
            "RELEASE_PUBLISHED_AT": release.published_at or "",
        }


class RefEvent(RepositoryEvent):
    """``create`` and ``delete``: a branch or tag appeared or went away."""

    ref: str = ""
    ref_type: str = ""

    def metadata(self, event: str) -> dict[str, str]:
        return {
            **self.base_metadata(event),
            "REF": self.ref,
            "REF_TYPE": self.ref_type,
        }


# Event name -> payload model. Recognised events without an entry use RepositoryEvent.
HANDLERS: dict[str, type[RepositoryEvent]] = {
    "pull_request": PullRequestEvent,
    "pull_request_with_check": PullRequestEvent,
    "push": PushEvent,
    "release": ReleaseEvent,
    "create": RefEvent,
    "delete": RefEvent,
}


def model_for(event: str) -> type[RepositoryEvent] | None:
    """Payload model for ``event``, or None if the event is not recognised."""
    if event not in EVENTS:
        return None
    return HANDLERS.get(event, RepositoryEvent)
