"""
Template loading and rendering utilities using Jinja2.
"""

import json
import shutil
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template

# Templates shipped with the package
DEFAULT_TEMPLATES = Path(__file__).parent.parent / "templates"


class TemplateLoader:
    """
    Loads and renders Jinja2 templates.

    Supports custom templates in the workspace (``templates/``) with fallback
    to the defaults shipped with the package.
    """

    def __init__(self, workspace_root: Path | None = None):
        """
        Initialize template loader.

        Args:
            workspace_root: Path to workspace directory (None for defaults only)
        """
        self.workspace_root = workspace_root
        self.workspace_templates = workspace_root / "templates" if workspace_root else None
        self.default_templates = DEFAULT_TEMPLATES
        self._env: Environment | None = None
        self._template_cache: dict[str, Template] = {}

    def has_custom_templates(self) -> bool:
        """Check if workspace has custom templates."""
        return self.workspace_templates is not None and self.workspace_templates.exists()

    @property
    def env(self) -> Environment:
        """
        Get or create Jinja2 environment (cached).

        Returns:
            Cached Jinja2 Environment configured for template loading
        """
        if self._env is None:
            template_dirs = []

            # Check workspace templates first
            if self.has_custom_templates():
                template_dirs.append(str(self.workspace_templates))

            # Fall back to package templates
            if self.default_templates.exists():
                template_dirs.append(str(self.default_templates))

            if not template_dirs:
                raise FileNotFoundError("No template directories found")

            self._env = Environment(
                loader=FileSystemLoader(template_dirs),
                trim_blocks=True,
                lstrip_blocks=True,
                keep_trailing_newline=True,
                undefined=StrictUndefined,
            )

            # Values are emitted as JSON strings, which YAML and bash both accept
            self._env.filters["quote"] = lambda x: json.dumps("" if x is None else str(x))

        return self._env

    def get_template_path(self, template_name: str) -> Path:
        """
        Get path to template file, preferring workspace over defaults.

        Args:
            template_name: Template name (e.g., "vars.yml.j2")

        Returns:
            Path to template file
        """
        if self.has_custom_templates():
            workspace_template = self.workspace_templates / template_name
            if workspace_template.exists():
                return workspace_template

        default_template = self.default_templates / template_name
        if default_template.exists():
            return default_template

        raise FileNotFoundError(f"Template '{template_name}' not found in workspace or defaults")

    def load_template(self, template_name: str) -> Template:
        """Load a Jinja2 template with caching."""
        if template_name not in self._template_cache:
            # Verify template exists (will raise if not found)
            self.get_template_path(template_name)
            self._template_cache[template_name] = self.env.get_template(template_name)

        return self._template_cache[template_name]

    def render(self, template_name: str, **context) -> str:
        """Render a template to a string."""
        return self.load_template(template_name).render(**context)

    def copy_default_templates_to_workspace(self) -> Path:
        """
        Copy default templates to workspace for customization.

        Existing workspace templates are moved to ``templates.backup``.

        Returns:
            Path of the workspace templates directory
        """
        if self.workspace_root is None:
            raise ValueError("No workspace configured for template copy")
        if not self.default_templates.exists():
            raise FileNotFoundError(f"Default templates not found at {self.default_templates}")

        if self.workspace_templates.exists():
            backup_dir = self.workspace_root / "templates.backup"
            if backup_dir.exists():
                shutil.rmtree(backup_dir)
            shutil.move(str(self.workspace_templates), str(backup_dir))

        shutil.copytree(str(self.default_templates), str(self.workspace_templates))
        self._env = None
        self._template_cache.clear()
        return self.workspace_templates
