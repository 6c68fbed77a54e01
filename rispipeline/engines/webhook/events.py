"""Translate GitHub webhook payloads into cached-activity updates. Pure, no DB."""

from __future__ import annotations

from typing import Any

from rispipeline.engines.collector.activity import LibraryActivity

CONTENT_EVENTS = frozenset({"push", "pull_request", "issues", "release"})


def extract_repository(payload: dict[str, Any]) -> tuple[str, str] | None:
    """``(owner, repo)`` of the payload's repository, or None if absent."""
    repository = payload.get("repository") or {}
    full_name = repository.get("full_name")
    if full_name and "/" in full_name:
        owner, repo = full_name.split("/", 1)
        return owner, repo
    owner = (repository.get("owner") or {}).get("login") or (repository.get("owner") or {}).get(
        "name"
    )
    name = repository.get("name")
    if owner and name:
        return owner, name
    return None


def _login(user: dict | None) -> str:
    return (user or {}).get("login") or "unknown"


def _commit_items(payload: dict[str, Any]) -> list[dict[str, Any]]:
    items = []
    for commit in payload.get("commits") or []:
        author = commit.get("author") or {}
        items.append(
            {
                "sha": commit.get("id"),
                "date": commit.get("timestamp"),
                "author": author.get("username") or author.get("name") or "unknown",
                "message": commit.get("message", ""),
            }
        )
    return [item for item in items if item["sha"]]


def _pr_item(pr: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": pr.get("id"),
        "number": pr.get("number"),
        "title": pr.get("title"),
        "created_at": pr.get("created_at"),
        "merged_at": pr.get("merged_at"),
        "closed_at": pr.get("closed_at"),
        "state": pr.get("state"),
        "merged": bool(pr.get("merged") or pr.get("merged_at")),
        "author": _login(pr.get("user")),
        "additions": pr.get("additions", 0) or 0,
        "deletions": pr.get("deletions", 0) or 0,
        "changed_files": pr.get("changed_files", 0) or 0,
    }


def _issue_item(issue: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": issue.get("id"),
        "number": issue.get("number"),
        "title": issue.get("title"),
        "created_at": issue.get("created_at"),
        "closed_at": issue.get("closed_at"),
        "state": issue.get("state"),
        "author": _login(issue.get("user")),
        "comments": issue.get("comments", 0),
        "labels": [
            label.get("name")
            for label in issue.get("labels") or []
            if isinstance(label, dict) and label.get("name")
        ],
    }


def _release_item(release: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": release.get("id"),
        "tag_name": release.get("tag_name"),
        "name": release.get("name") or release.get("tag_name"),
        "published_at": release.get("published_at") or release.get("created_at"),
        "prerelease": bool(release.get("prerelease")),
        "draft": bool(release.get("draft")),
    }


def apply_event(activity: LibraryActivity, event_type: str, payload: dict[str, Any]) -> int:
    """Merge one webhook delivery into *activity*. Returns the number of new items.

    Commits dedupe by sha, pull requests and issues by number, releases by
    id; only ``published`` releases are recorded and issue events for pull
    requests are ignored. Re-applying the same payload changes nothing.
    """
    if event_type == "push":
        return activity.merge_items("commits", _commit_items(payload))

    if event_type == "pull_request":
        pr = payload.get("pull_request")
        if not pr or pr.get("number") is None:
            return 0
        return activity.merge_items("prs", [_pr_item(pr)])

    if event_type == "issues":
        issue = payload.get("issue")
        if not issue or issue.get("pull_request") or issue.get("number") is None:
            return 0
        return activity.merge_items("issues", [_issue_item(issue)])

    if event_type == "release":
        release = payload.get("release")
        if payload.get("action") != "published" or not release or release.get("id") is None:
            return 0
        return activity.merge_items("releases", [_release_item(release)])

    return 0
