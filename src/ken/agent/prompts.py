"""Prompt templates for the ken agent."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ken.agent.tools.base import ToolRegistry

BASE_PROMPT = """You are Ken, an AI assistant specialized in GitLab issue management.

Your primary responsibilities:
- Help users query and understand GitLab issues
- Provide insights about project activity and status
- Answer questions about issues, assignees, labels, and milestones
- Suggest actionable next steps for issue management

When responding:
- Be concise and helpful
- Use the provided project context to give accurate information
- Format responses clearly with bullet points or numbered lists when appropriate
- Always base responses on the actual project data provided

If you don't have enough context or information, ask for clarification rather than guessing."""


def build_system_prompt(
    project_id: str | None,
    context_text: str | None = None,
    registry: ToolRegistry | None = None,
) -> str:
    """Assemble the system prompt.

    Args:
        project_id: Current project, if one is selected.
        context_text: Rendered project context (see ``render_for_prompt``).
        registry: Tools the model may call.
    """
    parts = [BASE_PROMPT]

    if project_id:
        parts.append(f"## Current GitLab Project\nProject: {project_id}")
    if context_text:
        parts.append(context_text.strip())
    if registry is not None and len(registry):
        parts.append("## Available GitLab Tools\n" + registry.describe().rstrip())

    return "\n\n".join(parts) + "\n"


# =============================================================================
# Task Prompts
# =============================================================================

ISSUE_DRAFT_PROMPT = """Draft a GitLab issue from the request below.

Request:
{description}

Use only labels that exist in the project context. Respond with a single JSON
object and nothing else, in this shape:
{{"title": "short imperative title", "description": "markdown body", "labels": ["label"]}}"""

SUMMARIZE_PROMPT = """Summarize GitLab issue #{iid} for a busy teammate.

Title: {title}
State: {state}
Author: {author}
Assignee: {assignee}
Labels: {labels}
Milestone: {milestone}

Description:
{description}

Give a short summary, the current status, and concrete next steps."""

SUGGEST_PROMPT = """Suggest who should be assigned GitLab issue #{iid}.

Title: {title}
Labels: {labels}

Description:
{description}

Current team workload (score = open issues + 2 x open merge requests):
{workload}

Recommend one or two members by username. Weigh both expertise implied by
their current work and available capacity, and explain briefly."""
