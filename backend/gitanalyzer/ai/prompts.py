"""Prompt assembly for analysis jobs.

Context truncation is a hard character cutoff and template substitution is
literal ``{{name}}`` replacement; unknown placeholders are left verbatim.
"""

from dataclasses import dataclass

MARKDOWN_FORMAT_INSTRUCTIONS = """
IMPORTANT: Format your answer as rich, structured markdown:
- Use markdown tables with | to organize comparative data
- Use emojis for visual categorization (✅ ⚠️ 🔴 💡 📊 🎯 etc)
- Use priority badges: 🔴 High | 🟡 Medium | 🟢 Low
- Use blockquotes (>) to highlight important information
- Use numbered and bulleted lists
- Separate sections with --- where appropriate
- Use **bold** for the titles of important items
- Use `code` for technical terms
"""

FALLBACK_SYSTEM_PROMPT = "You are a specialized assistant."

# Prefix length used to detect whether a stored template already embeds the context
_CONTEXT_PROBE_LENGTH = 100


@dataclass(frozen=True)
class PromptPair:
    system: str
    user: str


def render_template(template: str, variables: dict[str, str]) -> str:
    """Replace each ``{{key}}`` with its value. Other braces are untouched."""
    rendered = template
    for key, value in variables.items():
        rendered = rendered.replace("{{" + key + "}}", value)
    return rendered


# Template placeholders filled from snapshot sections, in budget order
_SNAPSHOT_VARIABLES = (
    ("readme", "readmeContent"),
    ("structure", "fileStructure"),
    ("dependencies", "packageJsonContent"),
    ("sourceCode", "sourceCodeContent"),
)


def template_variables(
    project_name: str, github_url: str, snapshot: dict, max_context: int | None = None
) -> dict[str, str]:
    """Placeholder values for stored templates.

    Snapshot sections share one ``max_context`` character budget, spent in
    ``_SNAPSHOT_VARIABLES`` order; each section is hard-cut to what is left.
    """
    variables = {"projectName": project_name, "githubUrl": github_url}
    remaining = max_context
    for name, key in _SNAPSHOT_VARIABLES:
        value = snapshot.get(key) or ""
        if remaining is not None:
            value = value[:remaining]
            remaining -= len(value)
        variables[name] = value
    return variables


def build_project_context(project_name: str, github_url: str, snapshot: dict, max_context: int) -> str:
    """Render the repository snapshot as markdown, cut to ``max_context`` characters."""
    repo = snapshot.get("repoData") or {}
    context = f"""
# Project: {project_name}
URL: {github_url}

## Repository Information
- Description: {repo.get("description") or "No description"}
- Primary language: {repo.get("language") or "Not specified"}
- Stars: {repo.get("stars") or 0}
- Forks: {repo.get("forks") or 0}

## README
{snapshot.get("readmeContent") or ""}

## File Structure
{snapshot.get("fileStructure") or ""}

## package.json
{snapshot.get("packageJsonContent") or ""}

## Source Code
{snapshot.get("sourceCodeContent") or ""}

## Configuration
{snapshot.get("configContent") or ""}
"""
    return context[:max_context]


def assemble_prompts(
    system_prompt: str,
    user_prompt: str,
    context: str,
    variables: dict[str, str],
    from_template: bool,
    language: str | None = None,
) -> PromptPair:
    """Build the final (system, user) pair for one analysis.

    Stored templates are rendered with ``variables`` and get the context
    appended only when they did not embed it. Built-in defaults always carry
    the context right after the instruction.
    """
    if from_template:
        user = render_template(user_prompt, variables)
    else:
        instruction = user_prompt
        if language:
            instruction = f"{instruction} Write the report in {language}."
        user = f"{instruction}\n\n{context}"

    if "markdown" not in user:
        user = f"{user}\n\n{MARKDOWN_FORMAT_INSTRUCTIONS}"

    if from_template and context[:_CONTEXT_PROBE_LENGTH] not in user:
        user = f"{user}\n\nProject Context:\n{context}"

    return PromptPair(system=system_prompt or FALLBACK_SYSTEM_PROMPT, user=user)


CHAT_SYSTEM_PROMPT = """You are an AI assistant specialized in code analysis and software development. You are helping a developer with the project "{project_name}".

You have access to the following project information:
{project_info}

Guidelines:
- Always answer in {language}
- Be concise but complete
- Provide code examples when relevant
- If you are not sure about something specific to the project, say so clearly
- Suggest good practices and improvements when appropriate
- Use markdown to format your answers"""


def build_chat_context(project_name: str, github_url: str, snapshot: dict, max_context: int) -> str:
    """Project facts for the chat system prompt: name, URL and the README, structure and dependency sections."""
    parts = [f"## Project: {project_name}", f"GitHub: {github_url}"]
    if snapshot.get("readmeContent"):
        parts.append(f"\n## Project README:\n{snapshot['readmeContent']}")
    if snapshot.get("fileStructure"):
        parts.append(f"\n## Project Structure:\n{snapshot['fileStructure']}")
    if snapshot.get("packageJsonContent"):
        parts.append(f"\n## Dependencies:\n{snapshot['packageJsonContent']}")
    return "\n".join(parts)[:max_context]


def chat_system_prompt(project_name: str, project_info: str, language: str) -> str:
    return CHAT_SYSTEM_PROMPT.format(project_name=project_name, project_info=project_info, language=language)
