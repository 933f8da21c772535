"""
planforge: oracle prompt templates

File: src/planforge/providers/prompt_templates.py

Purpose
- Render the system and user prompts for the compile and generate phases.

Functional requirements
- Rendering is deterministic for identical requests; undefined variables fail loudly.
- Each rendered prompt carries a hash so call logs can be compared across runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError

from planforge.compiler.context_builder import format_context
from planforge.utils.hashing import sha256_text

if TYPE_CHECKING:
    from planforge.domain.models import NodeContext
    from planforge.providers.base import CompileRequest, GenerateRequest


class PromptTemplateError(RuntimeError):
    """Raised when a prompt template cannot be rendered."""


_CONTEXT_BLOCK: Final[str] = """\
Module: {{ node_context.module }}
Ancestry: {{ node_context.ancestry | join(" > ") }}
Summary: {{ summary }}
{% if node_context.interfaces %}
### Available Interfaces
{% for name, entry in node_context.interfaces | dictsort %}
**{{ name }}** (from {{ entry.declaring_node }}):
{{ entry.definition }}
{% endfor %}{% endif %}
{%- if node_context.constraints %}
### Constraints
{% for entry in node_context.constraints %}- {{ "[MUST]" if entry.important else "[SHOULD]" }} {{ entry.rule }} (from {{ entry.declaring_node }})
{% endfor %}{% endif %}
{%- if node_context.suggestions %}
### Suggestions
{% for entry in node_context.suggestions %}- {{ entry.rule }} (from {{ entry.declaring_node }})
{% endfor %}{% endif %}
{%- if node_context.utilities %}
### Available Utilities
{% for entry in node_context.utilities %}- {{ entry.name }}: `{{ entry.signature }}` at {{ entry.location }}
{% endfor %}{% endif %}
{%- if node_context.query_matches %}
### Applicable Conditions
{% for match in node_context.query_matches %}- {{ match }}
{% endfor %}{% endif %}"""

_TEMPLATES: Final[dict[str, str]] = {
    "context.j2": _CONTEXT_BLOCK,
    "compile_system.j2": """\
You decompose software specifications into modular child components.

Each child must be cohesive, clearly named and sized so it can be implemented directly
or decomposed once more. Never name a child after its parent.
{% if not allow_nodes %}
Only leaf children are allowed at this depth: mark every child with "is_leaf": true.
{% endif %}
Reply with a single JSON object:
{
  "children": [{"name": "...", "is_leaf": false, "spec": "...", "files": [], "commands": []}],
  "questions": [{"id": "q1", "question": "...", "context": "...", "assumption": "...", "impact": "...", "options": []}],
  "considerations": [{"id": "c1", "note": "...", "blocking": false}],
  "interfaces": [{"name": "...", "definition": "..."}],
  "constraints": [{"rule": "...", "important": true}],
  "suggestions": [{"rule": "..."}],
  "utilities": [{"name": "...", "signature": "...", "location": "..."}]
}
Mark constraints that MUST be followed as important; everything else is a suggestion.
""",
    "compile_user.j2": """\
# Module: {{ node_path }}

## Context
{% include "context.j2" %}

## Specification
{{ spec }}

---
Break this specification down into child modules. Return JSON only.
""",
    "generate_system.j2": """\
You implement a leaf specification as working files.

Respect every constraint from the context, especially those marked [MUST].
File paths are relative to the leaf's output directory.

Reply with a single JSON object:
{
  "files": [{"path": "relative/path", "content": "..."}],
  "questions": [{"id": "q1", "question": "...", "assumption": "..."}],
  "considerations": [{"id": "c1", "note": "...", "blocking": false}]
}
""",
    "generate_user.j2": """\
# Module: {{ node_path }}

## Context
{% include "context.j2" %}

## Specification
{{ spec }}
{% if required_files %}
## Required Files
{% for path in required_files %}- {{ path }}
{% endfor %}{% endif %}
---
Generate the implementation for this leaf. Return JSON only.
""",
}

_ENVIRONMENT: Final[Environment] = Environment(
    loader=DictLoader(_TEMPLATES),
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=False,
    lstrip_blocks=False,
    newline_sequence="\n",
    keep_trailing_newline=True,
)


@dataclass(frozen=True, slots=True)
class RenderedPrompt:
    system: str
    user: str

    @property
    def prompt_hash(self) -> str:
        return sha256_text(f"{self.system}\n\n{self.user}")


def _render(template_name: str, **variables: object) -> str:
    try:
        return _ENVIRONMENT.get_template(template_name).render(**variables)
    except TemplateError as exc:
        raise PromptTemplateError(f"failed to render {template_name}: {exc}") from exc


def _context_variables(context: NodeContext) -> dict[str, object]:
    return {"node_context": context, "summary": format_context(context)}


def render_compile_prompts(request: CompileRequest) -> RenderedPrompt:
    return RenderedPrompt(
        system=_render("compile_system.j2", allow_nodes=request.allow_nodes),
        user=_render(
            "compile_user.j2",
            node_path=request.node_path,
            spec=request.spec,
            **_context_variables(request.context),
        ),
    )


def render_generate_prompts(request: GenerateRequest) -> RenderedPrompt:
    return RenderedPrompt(
        system=_render("generate_system.j2"),
        user=_render(
            "generate_user.j2",
            node_path=request.node_path,
            spec=request.spec,
            required_files=list(request.required_files),
            **_context_variables(request.context),
        ),
    )


__all__ = [
    "PromptTemplateError",
    "RenderedPrompt",
    "render_compile_prompts",
    "render_generate_prompts",
]
