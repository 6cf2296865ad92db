"""Prompt templates for the documentation pipeline.

Every builder is a pure function of its arguments: no timestamps or random
values are embedded, so identical inputs produce identical prompts and the
gateway's response cache stays effective.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass
class PromptTemplate:
    """A template for generating prompts with variable substitution."""

    template: str

    def render(self, **kwargs: Any) -> str:
        """Render the template with the given variables.

        Args:
            **kwargs: Variables to substitute into the template.

        Returns:
            The rendered template string.

        Raises:
            KeyError: If a required variable is missing.
        """
        return self.template.format(**kwargs)


class ResponseFormat(str, Enum):
    """Fenced block a stage expects back from the model."""

    YAML = "yaml"
    JSON = "json"
    MARKDOWN = "markdown"


@dataclass(frozen=True)
class StagePrompt:
    """A rendered prompt and the response format it asks for."""

    text: str
    response_format: ResponseFormat


@dataclass(frozen=True)
class LanguageHints:
    """Snippets injected into templates when output is not in English."""

    instruction: str = ""
    value_hint: str = ""
    list_note: str = ""
    display_name: str = "English"


def language_hints(language: str) -> LanguageHints:
    """Build the language snippets for a target output language."""
    if not language or language.lower() == "english":
        return LanguageHints()
    name = language[:1].upper() + language[1:]
    return LanguageHints(
        instruction=(
            f"IMPORTANT: Write every generated name, description, summary and label in "
            f"**{name}**. Do NOT use English for these fields.\n\n"
        ),
        value_hint=f" (in {name})",
        list_note=f" (names may be in {name})",
        display_name=name,
    )


# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT = """You are a senior engineer writing onboarding documentation for a codebase.
Be precise and factual: only describe what exists in the code you are shown.
Prefer plain language and short examples over jargon.
When asked for YAML or JSON, reply with exactly one fenced block in that format."""


# =============================================================================
# Stage 1: Identify Abstractions
# =============================================================================

IDENTIFY_ABSTRACTIONS_TEMPLATE = PromptTemplate(
    """For the project `{project_name}`:

Codebase context:
{context}

{language_instruction}Study the code above and identify the {max_abstractions} (at most) most important
abstractions a newcomer needs to understand. Aim for at least 3 when the code allows it.

For each abstraction provide:
1. `name`: a short name{value_hint}.
2. `description`: a beginner-friendly explanation of roughly 100 words, using a simple analogy{value_hint}.
3. `file_indices`: the relevant files, as `index # path` entries taken from the list below.

Files present in the context:
{file_listing}

Reply with a YAML list:

```yaml
- name: |
    Request Router
  description: |
    Decides which handler serves each incoming request.
    Think of it as the receptionist directing visitors to the right office.
  file_indices:
    - 0 # src/router.ts
    - 3 # src/handlers/index.ts
- name: |
    Session Store
  description: |
    Remembers who a user is between requests, like a cloakroom ticket.
  file_indices:
    - 5 # src/session.ts
```"""
)


def build_identify_abstractions_prompt(
    project_name: str,
    context: str,
    file_listing: str,
    max_abstractions: int,
    language: str = "english",
) -> StagePrompt:
    """Prompt for stage one: identify core abstractions."""
    hints = language_hints(language)
    text = IDENTIFY_ABSTRACTIONS_TEMPLATE.render(
        project_name=project_name,
        context=context,
        file_listing=file_listing,
        max_abstractions=max_abstractions,
        language_instruction=hints.instruction,
        value_hint=hints.value_hint,
    )
    return StagePrompt(text=text, response_format=ResponseFormat.YAML)


# =============================================================================
# Stage 2: Relationships
# =============================================================================

ANALYZE_RELATIONSHIPS_TEMPLATE = PromptTemplate(
    """Here are the core abstractions of the project `{project_name}`.

Abstractions (index # name){list_note}:
{abstraction_listing}

Context (abstractions, descriptions and code):
{context}

{language_instruction}Provide:
1. `summary`: a few beginner-friendly sentences on what the project does{value_hint}.
   Use **bold** and *italic* markdown to highlight key ideas.
2. `relationships`: the key interactions between abstractions. For each one give
   - `from_abstraction`: source index, written as `index # Name`
   - `to_abstraction`: target index, written as `index # Name`
   - `label`: a few words describing the interaction{value_hint}, e.g. "Manages", "Calls", "Configures"
   Prefer relationships backed by one abstraction calling or passing data to another.
   Leave out minor ones.

Every abstraction must take part in at least one relationship, as source or target.

Reply with YAML:

```yaml
summary: |
  A short explanation of the project{value_hint}.
relationships:
  - from_abstraction: 0 # Request Router
    to_abstraction: 1 # Session Store
    label: "Reads session"
  - from_abstraction: 2 # Config Loader
    to_abstraction: 0 # Request Router
    label: "Configures"
```"""
)


def build_analyze_relationships_prompt(
    project_name: str,
    context: str,
    abstraction_listing: str,
    language: str = "english",
) -> StagePrompt:
    """Prompt for stage two: project summary and abstraction relationships."""
    hints = language_hints(language)
    text = ANALYZE_RELATIONSHIPS_TEMPLATE.render(
        project_name=project_name,
        context=context,
        abstraction_listing=abstraction_listing,
        language_instruction=hints.instruction,
        value_hint=hints.value_hint,
        list_note=hints.list_note,
    )
    return StagePrompt(text=text, response_format=ResponseFormat.YAML)


# =============================================================================
# Stage 3: Chapter Order
# =============================================================================

ORDER_CHAPTERS_TEMPLATE = PromptTemplate(
    """Here are the abstractions of the project `{project_name}`.

Abstractions (index # name){list_note}:
{abstraction_listing}

Project summary and relationships:
{context}

You are planning a tutorial for `{project_name}`. In what order should these abstractions be
explained? Start with the most foundational or user-facing concepts and entry points, then
move towards lower-level implementation details and supporting pieces.

List every abstraction index exactly once, as `index # Name`.

```yaml
- 2 # Config Loader
- 0 # Request Router
- 1 # Session Store
```"""
)


def build_order_chapters_prompt(
    project_name: str,
    abstraction_listing: str,
    context: str,
    language: str = "english",
) -> StagePrompt:
    """Prompt for stage three: narrative order of abstractions."""
    hints = language_hints(language)
    text = ORDER_CHAPTERS_TEMPLATE.render(
        project_name=project_name,
        abstraction_listing=abstraction_listing,
        context=context,
        list_note=hints.list_note,
    )
    return StagePrompt(text=text, response_format=ResponseFormat.YAML)


# =============================================================================
# Stage 4: Write Chapter
# =============================================================================

WRITE_CHAPTER_TEMPLATE = PromptTemplate(
    """{language_instruction}Write a beginner-friendly tutorial chapter in Markdown for the project
`{project_name}` about "{abstraction_name}". This is Chapter {chapter_num}.

Concept details:
- Name: {abstraction_name}
- Description:
{abstraction_description}

Complete tutorial structure:
{full_chapter_listing}

Related abstractions (for cross-references):
{relationship_listing}

Context from previous chapters:
{previous_chapters}

Relevant code:
{file_context}

Instructions (write in {language_name}):
- Start with the heading `# Chapter {chapter_num}: {abstraction_name}`.
- If this is not the first chapter, open with a short transition from the previous chapter,
  linking to it with a Markdown link.
- Motivate the abstraction with one concrete use case and keep coming back to it.
- Break complex ideas into small concepts and explain them one at a time.
- Keep every code block under 10 lines. Simplify aggressively and explain each block right after it.
- Walk through what happens under the hood, ideally with a small `sequenceDiagram`
  (at most 5 participants) in a ```mermaid``` block.
- When mentioning another abstraction, link to its chapter: [Chapter Title](filename.md),
  using the filenames from the tutorial structure above.
- Use analogies freely.
- Finish with a short recap and a link to the next chapter if there is one.
- Output only the Markdown for this chapter, without wrapping it in a code fence."""
)


def build_write_chapter_prompt(
    project_name: str,
    chapter_num: int,
    abstraction_name: str,
    abstraction_description: str,
    full_chapter_listing: str,
    previous_chapters: str,
    file_context: str,
    relationship_listing: str = "",
    language: str = "english",
) -> StagePrompt:
    """Prompt for stage four: one chapter of Markdown."""
    hints = language_hints(language)
    text = WRITE_CHAPTER_TEMPLATE.render(
        project_name=project_name,
        chapter_num=chapter_num,
        abstraction_name=abstraction_name,
        abstraction_description=abstraction_description,
        full_chapter_listing=full_chapter_listing,
        relationship_listing=relationship_listing or "None listed.",
        previous_chapters=previous_chapters or "This is the first chapter.",
        file_context=file_context or "No specific code snippets for this abstraction.",
        language_instruction=hints.instruction,
        language_name=hints.display_name,
    )
    return StagePrompt(text=text, response_format=ResponseFormat.MARKDOWN)


# =============================================================================
# Format Correction
# =============================================================================

FORMAT_CORRECTION_TEMPLATE = PromptTemplate(
    """

IMPORTANT: Your previous reply could not be used ({problem}).
You must respond in the required format: exactly one fenced ```{fmt}``` block that follows
the structure shown above, with no other fenced blocks."""
)


def with_format_correction(prompt: StagePrompt, problem: str) -> StagePrompt:
    """Append the corrective instruction used for the single re-prompt."""
    suffix = FORMAT_CORRECTION_TEMPLATE.render(problem=problem, fmt=prompt.response_format.value)
    return StagePrompt(text=prompt.text + suffix, response_format=prompt.response_format)
