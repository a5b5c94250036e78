"""
Template renderer: materializes the Go source tree of an agent plugin from its descriptor.

The output depends only on the descriptor.  The single exception is the ``Generated by agentify
at ...`` comment line at the top of each source file, which never affects the build.
"""

import base64
import json
import logging
import re
import shutil
from dataclasses import dataclass
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
)

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError as JinjaTemplateError,
)

from agentify.core.errors import TemplateError
from agentify.core.schema import (
    AgentPluginDescriptor,
    BuildTarget,
    ResourceKind,
    ResourceSpec,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
TIMESTAMP_COMMENT = "Generated by agentify at"
MANIFEST_FILE = "manifest.json"
REQUIREMENTS_FILE = "requirements.txt"

ENTRYPOINT_TEMPLATES = {
    BuildTarget.NATIVE_MODULE: "main_native.go.j2",
    BuildTarget.BYTECODE_MODULE: "main_bytecode.go.j2",
}


@dataclass(frozen=True)
class RenderedSourceTree:
    """A generated source tree ready for the build invoker."""

    root: Path
    target: BuildTarget
    files: Tuple[str, ...]
    manifest: Dict[str, Any]

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    @property
    def has_requirements(self) -> bool:
        return REQUIREMENTS_FILE in self.files


# ---------------------------------------------------------------------------
# Jinja filters
# ---------------------------------------------------------------------------
def go_quote(value: Any) -> str:
    """Quote *value* as a Go interpreted string literal."""
    return json.dumps(str(value), ensure_ascii=False)


def go_json(value: Any) -> str:
    """Quote the JSON encoding of *value* as a Go string literal."""
    return go_quote(json.dumps(value, sort_keys=True))


def comment(value: Any) -> str:
    """Collapse *value* onto one line so it stays inside a ``//`` comment."""
    return " ".join(str(value).split())


def _safe_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "tool"


def _resource_text(resource: ResourceSpec) -> Optional[str]:
    """Return the content as text, or ``None`` when it has to be base64 encoded."""
    if resource.kind == ResourceKind.BINARY:
        return None
    if isinstance(resource.content, bytes):
        try:
            return resource.content.decode("utf-8")
        except UnicodeDecodeError:
            return None
    return resource.content


def _resource_bytes(resource: ResourceSpec) -> bytes:
    if isinstance(resource.content, bytes):
        return resource.content
    return resource.content.encode("utf-8")


def build_manifest(descriptor: AgentPluginDescriptor) -> Dict[str, Any]:
    """Manifest read by the runtime host when it loads the module."""
    return {
        "agentId": descriptor.agent_id,
        "agentName": descriptor.agent_name,
        "agentType": descriptor.agent_type.value,
        "buildTarget": descriptor.build_target.value,
        "version": descriptor.version,
        "description": descriptor.description,
        "isolation": descriptor.isolation.model_dump(mode="json"),
        "tools": [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": [param.model_dump(mode="json") for param in tool.parameters],
                "returnType": tool.return_type,
            }
            for tool in descriptor.tools
        ],
        "resources": [
            {"name": res.name, "kind": res.kind.value, "embedded": res.embedded}
            for res in descriptor.resources
        ],
        "prompts": [prompt.name for prompt in descriptor.prompts],
        "dependencies": list(descriptor.dependencies),
        "subAgentCapabilities": descriptor.sub_agent_capabilities,
        "ttl": descriptor.ttl,
        "signature": descriptor.signature,
        "factsUrl": descriptor.facts_url,
    }


class TemplateRenderer:
    """Render descriptors into source trees using the Jinja2 templates in *template_dir*."""

    def __init__(
        self,
        template_dir: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        self._env.filters["go_quote"] = go_quote
        self._env.filters["go_json"] = go_json
        self._env.filters["comment"] = comment

    def render(self, descriptor: AgentPluginDescriptor, working_dir: Path) -> RenderedSourceTree:
        """
        Write the source tree for *descriptor* into *working_dir*.

        The directory is created, or emptied when it already exists.

        Raises
        ------
        TemplateError
            On duplicate tool names, a missing template or an unusable working directory.
        """
        names = descriptor.tool_names()
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise TemplateError(f"Duplicate tool names: {', '.join(duplicates)}")

        root = Path(working_dir)
        self._prepare_dir(root)

        generated_at = self._clock().isoformat()
        go_header = (
            "// Code generated by agentify. DO NOT EDIT.\n"
            f"// {TIMESTAMP_COMMENT} {generated_at}"
        )
        manifest = build_manifest(descriptor)
        files: Dict[str, str] = {}

        files["go.mod"] = self._render(
            "go.mod.j2",
            header=go_header,
            module_name=re.sub(r"[^a-z0-9._-]+", "-", descriptor.agent_id.lower()),
        )
        files["registry.go"] = self._render(
            "registry.go.j2", header=go_header, tools=descriptor.tools
        )
        for index, tool in enumerate(descriptor.tools):
            files[f"tool_{index:02d}_{_safe_name(tool.name)}_gen.go"] = self._render(
                "tool.go.j2",
                header=go_header,
                tool=tool,
                func_name=f"tool{index}",
                needs_fmt=any(param.required for param in tool.parameters),
            )
        files["resources.go"] = self._render_resources(descriptor, go_header)
        files["prompts.go"] = self._render(
            "prompts.go.j2", header=go_header, prompts=descriptor.prompts
        )
        files["main.go"] = self._render(
            ENTRYPOINT_TEMPLATES[descriptor.build_target],
            header=go_header,
            manifest_json=json.dumps(manifest, sort_keys=True),
        )
        if descriptor.dependencies:
            files[REQUIREMENTS_FILE] = self._render(
                "requirements.txt.j2",
                header=f"# {TIMESTAMP_COMMENT} {generated_at}",
                dependencies=descriptor.dependencies,
            )
        files[MANIFEST_FILE] = json.dumps(manifest, indent=2, sort_keys=True) + "\n"

        for name, content in files.items():
            self._write(root / name, content)

        logger.info(
            "Rendered %d files for agent %s into %s", len(files), descriptor.agent_name, root
        )
        return RenderedSourceTree(
            root=root,
            target=descriptor.build_target,
            files=tuple(sorted(files)),
            manifest=manifest,
        )

    def _render_resources(self, descriptor: AgentPluginDescriptor, header: str) -> str:
        embedded: List[Dict[str, str]] = []
        external: List[Dict[str, str]] = []
        for resource in descriptor.resources:
            if not resource.embedded:
                # Content of a non-embedded resource is the path the runtime resolves.
                path = _resource_bytes(resource).decode("utf-8", "replace")
                external.append({"name": resource.name, "path": path})
                continue
            text = _resource_text(resource)
            if text is None:
                encoded = base64.b64encode(_resource_bytes(resource)).decode("ascii")
                data = f"mustDecode({go_quote(encoded)})"
            else:
                data = f"[]byte({go_quote(text)})"
            embedded.append({"name": resource.name, "kind": resource.kind.value, "data": data})

        return self._render(
            "resources.go.j2",
            header=header,
            embedded=embedded,
            external=external,
            needs_base64=any(res["data"].startswith("mustDecode(") for res in embedded),
        )

    def _render(self, template_name: str, **context: Any) -> str:
        try:
            return self._env.get_template(template_name).render(**context)
        except JinjaTemplateError as exc:
            raise TemplateError(f"Failed to render template '{template_name}': {exc}") from exc

    @staticmethod
    def _prepare_dir(root: Path) -> None:
        try:
            if root.exists():
                shutil.rmtree(root)
            root.mkdir(parents=True)
        except OSError as exc:
            raise TemplateError(f"Cannot prepare working directory {root}: {exc}") from exc

    @staticmethod
    def _write(path: Path, content: str) -> None:
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise TemplateError(f"Cannot write {path}: {exc}") from exc
