"""Ken: natural-language assistant for GitLab issues."""
