"""
Example tools shipped with agentguard.

They are ordinary pluggable capabilities: the orchestrator knows nothing about them beyond their
declarations.  ``default_registry()`` bundles them for the HTTP surface.
"""

import logging
from typing import (
    Any,
    Dict,
    Literal,
)

import httpx

from agentguard.config import settings
from agentguard.core.errors import ToolExecutionError
from agentguard.tools import (
    ToolParameter,
    ToolRegistry,
    tool,
)

logger = logging.getLogger(__name__)

_PROFILE_FIELDS = {
    "username": "login",
    "name": "name",
    "bio": "bio",
    "followers": "followers",
    "following": "following",
    "public_repos": "public_repos",
    "location": "location",
    "html_url": "html_url",
    "created_at": "created_at",
    "company": "company",
    "blog": "blog",
}


@tool(description="Performs arithmetic calculations.")
def calculate(
    a: float, b: float, operation: Literal["add", "subtract", "multiply", "divide"]
) -> float:
    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in (a, b)):
        raise ToolExecutionError("Parameters 'a' and 'b' must be numbers.")
    if operation == "add":
        return a + b
    if operation == "subtract":
        return a - b
    if operation == "multiply":
        return a * b
    if operation == "divide":
        if b == 0:
            raise ToolExecutionError("Division by zero.")
        return a / b
    raise ToolExecutionError(f"Unsupported operation '{operation}'")


@tool(
    "get_github_profile",
    description="Fetches public GitHub profile data for a username.",
    parameters=[ToolParameter(name="username", type="string", description="GitHub username")],
)
def get_github_profile(username: str) -> Dict[str, Any]:
    url = f"{settings.GITHUB_API_URL.rstrip('/')}/users/{username}"
    with httpx.Client(timeout=settings.HTTP_TIMEOUT) as client:
        resp = client.get(url, headers={"Accept": "application/vnd.github+json"})
    if resp.status_code != 200:
        raise ToolExecutionError(
            f"GitHub user '{username}' not found or API error {resp.status_code}"
        )
    data = resp.json()
    logger.debug("GitHub profile for %s: %s", username, data)
    return {field: data.get(source) for field, source in _PROFILE_FIELDS.items()}


def default_registry() -> ToolRegistry:
    """Registry with every example tool, in declaration order."""
    return ToolRegistry([get_github_profile, calculate])
