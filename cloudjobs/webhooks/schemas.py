"""
GitHub webhook payload schemas.

Only the fields the ingestor reads are declared; GitHub sends many more
and they are ignored.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class GitHubLabel(BaseModel):
    name: str


class GitHubRepository(BaseModel):
    full_name: str = Field(..., description="owner/name")


class GitHubIssue(BaseModel):
    number: int
    title: str
    body: Optional[str] = None
    labels: List[GitHubLabel] = Field(default_factory=list)


class GitHubPullRequest(BaseModel):
    number: int
    title: str
    body: Optional[str] = None
    html_url: str


class IssueWebhook(BaseModel):
    """`issues` event."""

    action: str
    issue: GitHubIssue
    repository: GitHubRepository


class PullRequestWebhook(BaseModel):
    """`pull_request` event."""

    action: str
    pull_request: GitHubPullRequest
    repository: GitHubRepository
