"""
Pydantic models for the Bitbucket Cloud API responses used by bb-cli, plus
the flat summary DTOs the commands render.

These models map to the Bitbucket Cloud REST API v2 response shapes and
only declare the fields bb-cli reads; everything else is ignored.
See: https://developer.atlassian.com/cloud/bitbucket/rest/
"""

from __future__ import annotations

import enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

ResourceT = TypeVar("ResourceT")


class PullRequestState(str, enum.Enum):
    """
    Enum of possible pull request states in Bitbucket Cloud.

    Bitbucket Cloud uses uppercase strings for state values in the API.
    Using str mixin so the enum serializes cleanly to/from JSON strings.
    """

    OPEN = "OPEN"
    MERGED = "MERGED"
    DECLINED = "DECLINED"
    SUPERSEDED = "SUPERSEDED"


class ApiModel(BaseModel):
    """Base for API response models: unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


class Account(ApiModel):
    """Subset of the Bitbucket 'account' object."""

    display_name: str | None = None
    nickname: str | None = None
    uuid: str | None = None
    account_id: str | None = None


class BranchReference(ApiModel):
    """A reference to a branch by name."""

    name: str


class PullRequestEndpoint(ApiModel):
    """
    Source or destination endpoint of a pull request.

    The branch may be None if the source branch was deleted after the PR
    was merged or declined.
    """

    branch: BranchReference | None = None


class HtmlLink(ApiModel):
    """A single link object from the Bitbucket API 'links' structure."""

    href: str


class ResourceLinks(ApiModel):
    html: HtmlLink | None = None


class Participant(ApiModel):
    """A pull request participant and their review state."""

    user: Account
    state: str | None = None
    approved: bool = False


class PullRequestResource(ApiModel):
    """
    A single pull request as returned by the Bitbucket Cloud API.

    The list endpoint omits reviewers and participants; the detail endpoint
    (GET /pullrequests/{id}) includes them.
    """

    id: int
    title: str | None = None
    state: str | None = None
    author: Account | None = None
    source: PullRequestEndpoint = PullRequestEndpoint()
    destination: PullRequestEndpoint = PullRequestEndpoint()
    links: ResourceLinks = ResourceLinks()
    reviewers: list[Account] = []
    participants: list[Participant] = []

    @property
    def destination_branch_name(self) -> str | None:
        return self.destination.branch.name if self.destination.branch is not None else None


class RawContent(ApiModel):
    raw: str | None = None


class InlineLocation(ApiModel):
    path: str | None = None
    to: int | None = None


class PullRequestComment(ApiModel):
    id: int
    author: Account | None = None
    created_on: str = ""
    content: RawContent = RawContent()
    inline: InlineLocation | None = None


class Commit(ApiModel):
    hash: str | None = None
    summary: RawContent = RawContent()


class DiffStatFile(ApiModel):
    path: str


class DiffStat(ApiModel):
    """One entry of GET /pullrequests/{id}/diffstat."""

    status: str | None = None
    old: DiffStatFile | None = None
    new: DiffStatFile | None = None

    @property
    def path(self) -> str:
        # Deleted files have no "new" side.
        if self.new is not None:
            return self.new.path
        return self.old.path if self.old is not None else ""


class Environment(ApiModel):
    uuid: str
    name: str


class DeploymentVariable(ApiModel):
    """A deployment environment variable. Secured variables carry no value."""

    uuid: str
    key: str
    value: str | None = None
    secured: bool = False


class PaginatedResponse(BaseModel, Generic[ResourceT]):
    """
    Paginated response wrapper from the Bitbucket Cloud API.

    The 'next' field contains the URL for the next page of results.
    When 'next' is None, there are no more pages to fetch.
    """

    model_config = ConfigDict(extra="ignore")

    size: int | None = None
    page: int | None = None
    pagelen: int | None = None
    next: str | None = None
    previous: str | None = None
    values: list[ResourceT] = []


class PullRequestSummary(BaseModel):
    """
    Flat data transfer object for rendering a pull request.

    Decouples the terminal/JSON output from the nested API response
    structure. Optional fields are dropped from the rendered mapping when
    empty, so the key order below is the display order.
    """

    id: int
    title: str | None = None
    state: str | None = None
    author: str | None = None
    source: str | None = None
    destination: str | None = None
    link: str | None = None
    reviewers: str | None = None
    participants: str | None = None

    @classmethod
    def from_api_resource(
        cls,
        resource: PullRequestResource,
        detail: PullRequestResource | None = None,
    ) -> PullRequestSummary:
        """
        Combine a list item and its detail record into one summary.

        Args:
            resource: The PR as returned by the list endpoint.
            detail: The full PR; defaults to resource (the "view" case).
        """
        detail = detail or resource

        reviewers = ", ".join(
            reviewer.display_name for reviewer in detail.reviewers if reviewer.display_name
        )
        participants = " | ".join(
            f"{participant.user.display_name} → {participant.state}"
            for participant in detail.participants
            if participant.state
        )

        return cls(
            id=resource.id,
            title=detail.title,
            state=detail.state,
            author=resource.author.nickname if resource.author is not None else None,
            source=resource.source.branch.name if resource.source.branch is not None else None,
            destination=resource.destination_branch_name,
            link=resource.links.html.href if resource.links.html is not None else None,
            reviewers=reviewers or None,
            participants=participants or None,
        )

    def to_display(self) -> dict[str, Any]:
        data = self.model_dump()
        if not self.title:
            data.pop("title")
            data.pop("state")
        for optional_field in ("reviewers", "participants"):
            if not data[optional_field]:
                data.pop(optional_field)
        return data


class DeploymentVariableSummary(BaseModel):
    uuid: str
    key: str
    value: str
    secured: str

    @classmethod
    def from_api_resource(cls, variable: DeploymentVariable) -> DeploymentVariableSummary:
        return cls(
            uuid=variable.uuid,
            key=variable.key,
            value=variable.value or "",
            secured="Yes" if variable.secured else "No",
        )
