"""Templates shipped with pgdev and their operator overrides.

Two kinds of templates live here:

* Blueprint templates: directories of ``*.configure.sh`` / ``*.build.sh``
  scripts copied into a new instance by ``pgdev new``.
* Jinja2 templates used to render configuration fragments, such as the
  runtime block appended to ``postgresql.conf`` during ``init``.

Both are looked up in the operator's override directory first and then in the
copies bundled with the package.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined

from .errors import TemplateNotFound

RESOURCES_DIR = Path(__file__).resolve().parent / "resources"
BUILTIN_BLUEPRINTS_DIR = RESOURCES_DIR / "blueprints"
BUILTIN_RENDER_DIR = RESOURCES_DIR / "render"

CONFIGURE_SUFFIX = ".configure.sh"


@dataclass(frozen=True, slots=True)
class TemplateCatalog:
    """Resolve blueprint template directories by name."""

    search_path: tuple[Path, ...]

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateCatalog:
        """Return a catalog searching *override_dir* before the built-in templates."""
        paths: list[Path] = []
        if override_dir is not None:
            paths.append(override_dir.expanduser())
        paths.append(BUILTIN_BLUEPRINTS_DIR)
        return cls(search_path=tuple(paths))

    def resolve(self, name: str) -> Path:
        """Return the directory for template *name*.

        Only directories holding at least one configure script count, so render
        overrides sharing the directory (``postgresql/``) are never picked up.
        """
        normalized = name.strip()
        if normalized and "/" not in normalized and normalized not in {".", ".."}:
            for base in self.search_path:
                candidate = base / normalized
                if _is_blueprint_template(candidate):
                    return candidate
        available = ", ".join(self.names()) or "none"
        raise TemplateNotFound(
            f"Template '{name}' not found. Available templates: {available}."
        )

    def names(self) -> list[str]:
        """Return every template name visible through the search path."""
        found: set[str] = set()
        for base in self.search_path:
            if not base.is_dir():
                continue
            for child in base.iterdir():
                if _is_blueprint_template(child):
                    found.add(child.name)
        return sorted(found)


def _is_blueprint_template(path: Path) -> bool:
    return path.is_dir() and any(path.glob(f"*{CONFIGURE_SUFFIX}"))


class TemplateEngine:
    """Render Jinja2 templates with strict undefined handling."""

    def __init__(self, search_path: list[Path]) -> None:
        """Create an environment that loads from *search_path* in order."""
        loaders = [FileSystemLoader(str(path)) for path in search_path]
        self._env = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine preferring templates in *override_dir*."""
        paths: list[Path] = []
        if override_dir is not None:
            paths.append(override_dir.expanduser())
        paths.append(BUILTIN_RENDER_DIR)
        return cls(paths)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        template = self._env.get_template(template_name)
        return template.render(**context)


__all__ = ["CONFIGURE_SUFFIX", "TemplateCatalog", "TemplateEngine"]
