"""knowledge_rag.generation.prompt_builder

Prompt templates and context assembly.

Templates are named pairs of Jinja2 strings (a system part and a user part)
registered from JSON files, package resources or dictionaries. The
:class:`ContextAssembler` renders them into the system prompt and user message
sent to the answering LLM: with retrieved chunks it produces a cited context
block per chunk, and without any it produces the no-context fallback.

Classes
-------
PromptTemplate
    A single named system/user template pair.
PromptBuilder
    Registry of prompt templates.
PromptResult
    Rendered system prompt and user message.
ContextAssembler
    Builds prompts from a question and retrieved chunks.
"""

from __future__ import annotations

import json
import logging
import warnings
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from jinja2 import Template

from knowledge_rag.common.schemas import RetrievedChunk
from knowledge_rag.common.tokenisation import TokenCounter

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_SOURCE = "pkg:knowledge_rag.generation:prompts/default.json"
CONTEXT_TEMPLATE = "rag_context"
NO_CONTEXT_TEMPLATE = "rag_no_context"


class PromptTemplate:
    """A named prompt made of a system part and a user part.

    Parameters
    ----------
    name : str
        Name of the template.
    system : str or None, optional
        Jinja2 source of the system prompt.
    user : str, optional
        Jinja2 source of the user message.
    """

    def __init__(self, name: str, system: Optional[str] = None, user: Optional[str] = ""):
        self.name = name
        self.system = system or ""
        self.user = user or ""
        self._system_tpl = Template(self.system)
        self._user_tpl = Template(self.user)

    def render_system(self, **kwargs) -> str:
        return self._system_tpl.render(**kwargs).strip()

    def render_user(self, **kwargs) -> str:
        return self._user_tpl.render(**kwargs)

    def render(self, **kwargs) -> str:
        """Render system and user parts joined by a blank line."""
        parts = [p for p in (self.render_system(**kwargs), self.render_user(**kwargs)) if p]
        return "\n\n".join(parts)


class PromptBuilder:
    """Registry of named :class:`PromptTemplate` objects."""

    def __init__(self):
        self.templates: Dict[str, PromptTemplate] = {}

    @classmethod
    def with_defaults(cls) -> "PromptBuilder":
        """Return a builder preloaded with the bundled default templates."""
        builder = cls()
        builder.register_from_source(DEFAULT_PROMPT_SOURCE)
        return builder

    def register_from_dict(self, data: Dict[str, Any]):
        """Register a template from a mapping with ``name``, ``system`` and ``user`` keys.

        Raises
        ------
        KeyError
            If ``"name"`` is missing.
        TypeError
            If fields have invalid types.
        ValueError
            If ``"name"`` is empty.
        """
        if "name" not in data:
            raise KeyError("Template definition missing required key: 'name'")
        name = data["name"]
        if not isinstance(name, str):
            raise TypeError(f"Template 'name' must be a str, got {type(name)!r}")
        if not name.strip():
            raise ValueError("Template 'name' must be a non-empty string")

        system = data.get("system")
        user = data.get("user") or ""
        for key, value in (("system", system), ("user", user)):
            if value is not None and not isinstance(value, str):
                raise TypeError(f"Template '{key}' must be a str, got {type(value)!r}")

        if name in self.templates:
            warnings.warn(f"Overwriting existing prompt template: {name}")
        self.templates[name] = PromptTemplate(name=name, system=system, user=user)

    def _register_payload(self, data: Any, origin: str) -> List[str]:
        registered: List[str] = []
        if isinstance(data, dict):
            self.register_from_dict(data)
            registered.append(data["name"])
        elif isinstance(data, list):
            for item in data:
                if not isinstance(item, dict):
                    raise TypeError(f"Template list items must be dicts, got {type(item)!r}")
                self.register_from_dict(item)
                registered.append(item["name"])
        else:
            raise TypeError(f"{origin} must contain an object or list of objects, got {type(data)!r}")
        return registered

    def register_from_file(self, path: Union[Path, str], base_dir: Optional[Path] = None) -> List[str]:
        """Register templates from a JSON file.

        Relative paths are resolved against ``base_dir`` when given.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        ValueError
            If the file is not ``.json``.
        """
        p = Path(path)
        if not p.is_absolute() and base_dir is not None:
            p = base_dir / p
        p = p.resolve()
        if not p.exists():
            raise FileNotFoundError(f"Prompt file not found: {p}")
        if p.suffix.lower() != ".json":
            raise ValueError(f"Unsupported file type: {p.suffix}")

        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return self._register_payload(data, f"Prompt file {p}")

    def register_from_package(self, package: str, resource_path: str) -> List[str]:
        """Register templates from a JSON resource bundled in ``package``.

        Raises
        ------
        FileNotFoundError
            If the resource does not exist.
        ValueError
            If the resource is not ``.json``.
        """
        if not resource_path.lower().endswith(".json"):
            raise ValueError(f"Unsupported resource type: {resource_path}")

        try:
            res = resources.files(package).joinpath(resource_path)
        except ModuleNotFoundError as e:
            raise FileNotFoundError(f"Could not locate resource '{resource_path}' in package '{package}'") from e

        if not res.is_file():
            raise FileNotFoundError(f"Prompt resource not found: pkg:{package}:{resource_path}")

        data = json.loads(res.read_text(encoding="utf-8"))
        return self._register_payload(data, f"Prompt resource pkg:{package}:{resource_path}")

    def register_from_source(self, source: str, base_dir: Optional[Path] = None) -> List[str]:
        """Register templates from ``pkg:<package>:<resource>``, ``file:<path>`` or a plain path."""
        if not isinstance(source, str):
            raise TypeError(f"source must be a str, got {type(source)!r}")

        if source.startswith("pkg:"):
            rest = source[len("pkg:"):]
            if ":" not in rest:
                raise ValueError("pkg: sources must be of the form 'pkg:<package>:<resource_path>'")
            package, resource_path = rest.split(":", 1)
            return self.register_from_package(package.strip(), resource_path.strip())

        if source.startswith("file:"):
            return self.register_from_file(Path(source[len("file:"):].strip()), base_dir=base_dir)

        return self.register_from_file(Path(source), base_dir=base_dir)

    def list_prompts(self) -> List[str]:
        return sorted(self.templates.keys())

    def has_prompt(self, name: str) -> bool:
        return name in self.templates

    def get_template(self, name: str) -> PromptTemplate:
        """Return the template registered under ``name``.

        Raises
        ------
        KeyError
            If no template is registered under ``name``.
        """
        if name not in self.templates:
            available = ", ".join(self.list_prompts())
            raise KeyError(f"No template registered under name: {name}. Available: [{available}]")
        return self.templates[name]

    def build(self, name: str, **kwargs) -> str:
        return self.get_template(name).render(**kwargs)


@dataclass(frozen=True)
class PromptResult:
    """Rendered prompt pair.

    Attributes
    ----------
    system_prompt : str
        System prompt, with the context section when chunks were supplied.
    user_message : str
        The wrapped question.
    used_chunks : int
        Number of chunks placed in the context.
    omitted_chunks : int
        Chunks left out because of the context token budget.
    """

    system_prompt: str
    user_message: str
    used_chunks: int = 0
    omitted_chunks: int = 0


class ContextAssembler:
    """Build the answering prompt from a question and retrieved chunks.

    Parameters
    ----------
    prompt_builder : PromptBuilder or None, optional
        Template registry. Defaults to the bundled templates.
    context_template : str, optional
        Template used when chunks are present.
    no_context_template : str, optional
        Template used when no chunks are present.
    max_context_tokens : int or None, optional
        Token budget for chunk text in the context. Chunks are taken in input
        order; the first chunk is always included.
    token_counter : TokenCounter or None, optional
        Counter for the token budget. Required when ``max_context_tokens`` is set.
    """

    def __init__(
        self,
        prompt_builder: PromptBuilder | None = None,
        *,
        context_template: str = CONTEXT_TEMPLATE,
        no_context_template: str = NO_CONTEXT_TEMPLATE,
        max_context_tokens: int | None = None,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self.prompt_builder = prompt_builder or PromptBuilder.with_defaults()
        self.context_template = context_template
        self.no_context_template = no_context_template
        if max_context_tokens is not None and token_counter is None:
            raise ValueError("max_context_tokens requires a token_counter")
        self.max_context_tokens = max_context_tokens
        self.token_counter = token_counter

        for name in (context_template, no_context_template):
            if not self.prompt_builder.has_prompt(name):
                raise KeyError(f"Prompt template {name!r} is not registered")

    def build_prompt(self, question: str, chunks: Sequence[RetrievedChunk]) -> PromptResult:
        """Render the system prompt and user message.

        Parameters
        ----------
        question : str
            User question, placed verbatim in the user message.
        chunks : Sequence[RetrievedChunk]
            Context chunks in the order they should appear. An empty sequence
            selects the no-context template.

        Returns
        -------
        PromptResult
            Rendered prompt pair.
        """
        selected = self._within_budget(list(chunks))
        omitted = len(chunks) - len(selected)
        if omitted:
            logger.info("Context budget of %d tokens left out %d chunk(s)", self.max_context_tokens, omitted)

        if not selected:
            template = self.prompt_builder.get_template(self.no_context_template)
            return PromptResult(
                system_prompt=template.render_system(question=question),
                user_message=template.render_user(question=question),
            )

        template = self.prompt_builder.get_template(self.context_template)
        context = {
            "question": question,
            "documents": _available_documents(selected),
            "chunks": [
                {
                    "label": c.document_file_path or c.document_title or "unknown",
                    "title": c.document_title or c.document_file_path or "unknown",
                    "path": c.document_file_path or "",
                    "percent": int(c.similarity * 100),
                    "text": c.content.strip(),
                }
                for c in selected
            ],
        }
        return PromptResult(
            system_prompt=template.render_system(**context),
            user_message=template.render_user(**context),
            used_chunks=len(selected),
            omitted_chunks=omitted,
        )

    def _within_budget(self, chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
        if self.max_context_tokens is None or not chunks:
            return chunks
        selected: list[RetrievedChunk] = []
        used = 0
        for c in chunks:
            cost = self.token_counter.count(c.content)
            if selected and used + cost > self.max_context_tokens:
                break
            selected.append(c)
            used += cost
        return selected


def _available_documents(chunks: Sequence[RetrievedChunk]) -> list[dict[str, str]]:
    by_path: dict[str, str] = {}
    for c in chunks:
        path = c.document_file_path or c.document_title or "unknown"
        by_path.setdefault(path, c.document_title or path)
    return [{"path": p, "title": by_path[p]} for p in sorted(by_path)]


__all__ = [
    "PromptTemplate",
    "PromptBuilder",
    "PromptResult",
    "ContextAssembler",
    "DEFAULT_PROMPT_SOURCE",
]
