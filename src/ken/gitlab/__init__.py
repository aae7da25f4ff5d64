"""GitLab REST API access."""

from ken.gitlab.client import (
    GitLabAPIError,
    GitLabAuthError,
    GitLabClient,
    GitLabClientError,
    GitLabNotFoundError,
    GitLabTransportError,
    encode_project_id,
)
from ken.gitlab.models import (
    GitLabIssue,
    GitLabMergeRequest,
    GitLabProject,
    GitLabUser,
    ProjectMember,
    access_level_to_role,
)

__all__ = [
    "GitLabAPIError",
    "GitLabAuthError",
    "GitLabClient",
    "GitLabClientError",
    "GitLabIssue",
    "GitLabMergeRequest",
    "GitLabNotFoundError",
    "GitLabProject",
    "GitLabTransportError",
    "GitLabUser",
    "ProjectMember",
    "access_level_to_role",
    "encode_project_id",
]
