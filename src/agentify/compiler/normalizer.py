"""
Config normalizer: the single adapter from the loosely-typed UI configuration to the canonical
:class:`~agentify.core.schema.AgentPluginDescriptor`.
"""

import json
import logging
import uuid
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
)

from pydantic import ValidationError as PydanticValidationError

from agentify.common import slugify
from agentify.core.errors import ValidationError
from agentify.core.schema import (
    FACTS_URL_TEMPLATE,
    AgentPluginDescriptor,
    PromptSpec,
    ResourceKind,
    ResourceSpec,
)
from agentify.tools import (
    ToolCatalog,
    default_catalog,
)

logger = logging.getLogger(__name__)

AGENT_NAME_PREFIX = "urn:agent:agentify:"
REQUIRED_KEYS = ("name", "personality", "instructions", "features", "settings")
SYSTEM_PROMPT_NAME = "system"


def _missing(raw: Mapping[str, Any], key: str) -> bool:
    value = raw.get(key)
    if key == "features":
        # An empty feature set is valid; only an absent one is not.
        return value is None
    if isinstance(value, str):
        return not value.strip()
    return not value and not isinstance(value, Mapping)


def _settings_resources(settings: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Expand enabled secondary-service endpoints and the creativity setting into resources."""
    resources: List[Dict[str, Any]] = []
    for index, server in enumerate(settings.get("mcpServers") or []):
        if isinstance(server, Mapping) and server.get("enabled"):
            resources.append(
                {
                    "name": f"mcp_server_{index}",
                    "kind": ResourceKind.STRUCTURED,
                    "content": json.dumps(dict(server), sort_keys=True),
                    "embedded": True,
                }
            )
    creativity = settings.get("creativity")
    if creativity is not None:
        resources.append(
            {
                "name": "creativity_parameter",
                "kind": ResourceKind.TEXT,
                "content": str(creativity),
                "embedded": True,
            }
        )
    return resources


def _credential_resource(api_keys: Any) -> Dict[str, Any]:
    if isinstance(api_keys, Mapping):
        return {
            "name": "api_keys",
            "kind": ResourceKind.STRUCTURED,
            "content": json.dumps(dict(api_keys), sort_keys=True),
            "embedded": True,
        }
    return {"name": "api_keys", "kind": ResourceKind.TEXT, "content": str(api_keys)}


def _system_prompt(personality: str, instructions: str) -> Dict[str, Any]:
    return PromptSpec(
        name=SYSTEM_PROMPT_NAME,
        content=f"Personality: {personality}\n\nInstructions: {instructions}",
    ).model_dump()


def _as_list(raw: Mapping[str, Any], key: str) -> List[Any]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"'{key}' must be a list", [f"{key}: expected a list"])
    return list(value)


def _format_problems(exc: PydanticValidationError) -> List[str]:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "descriptor"
        problems.append(f"{location}: {err['msg']}")
    return problems


def normalize(
    raw_input: Any,
    catalog: Optional[ToolCatalog] = None,
    id_factory: Optional[Callable[[], Any]] = None,
) -> AgentPluginDescriptor:
    """
    Convert a UI configuration into a canonical descriptor.

    Parameters
    ----------
    raw_input:
        Mapping with at least ``name``, ``personality``, ``instructions``, ``features`` and
        ``settings``.  Optional keys: ``agent_id``, ``agent_name``, ``apiKeys``, ``tools``,
        ``resources``, ``prompts``, ``isolation``, ``dependencies``, ``agentType``,
        ``buildTarget`` and the pass-through metadata (``version``, ``ttl``, ``signature``,
        ``facts_url``).
    catalog:
        Feature-flag catalog; defaults to :func:`agentify.tools.default_catalog`.
    id_factory:
        Source of new agent ids; defaults to :func:`uuid.uuid4`.

    Returns
    -------
    AgentPluginDescriptor
        The frozen, validated descriptor.

    Raises
    ------
    ValidationError
        If required keys are missing or the result violates a descriptor invariant.
    """
    if not isinstance(raw_input, Mapping):
        raise ValidationError("Invalid UI config: expected a mapping")

    missing = [key for key in REQUIRED_KEYS if _missing(raw_input, key)]
    if missing:
        raise ValidationError(
            f"Missing required UI config fields: {', '.join(missing)}",
            [f"{key}: required" for key in missing],
        )
    features = raw_input["features"]
    settings = raw_input["settings"]
    if not isinstance(features, Mapping):
        raise ValidationError("'features' must be a mapping", ["features: expected a mapping"])
    if not isinstance(settings, Mapping):
        raise ValidationError("'settings' must be a mapping", ["settings: expected a mapping"])

    catalog = catalog if catalog is not None else default_catalog()
    display_name = str(raw_input["name"])
    personality = str(raw_input["personality"])
    instructions = str(raw_input["instructions"])

    agent_id = raw_input.get("agent_id") or str((id_factory or uuid.uuid4)())
    agent_name = raw_input.get("agent_name") or f"{AGENT_NAME_PREFIX}{slugify(display_name)}"

    tools: List[Any] = [spec.model_dump() for spec in catalog.expand(features)]
    tools.extend(_as_list(raw_input, "tools"))

    resources: List[Any] = _settings_resources(settings)
    if raw_input.get("apiKeys"):
        resources.append(_credential_resource(raw_input["apiKeys"]))
    resources.extend(_as_list(raw_input, "resources"))

    prompts = _as_list(raw_input, "prompts")
    if not any(isinstance(p, Mapping) and p.get("name") == SYSTEM_PROMPT_NAME for p in prompts):
        prompts.insert(0, _system_prompt(personality, instructions))

    fields: Dict[str, Any] = {
        "agent_id": str(agent_id),
        "agent_name": str(agent_name),
        "display_name": display_name,
        "description": instructions,
        "personality": personality,
        "tools": tools,
        "resources": resources,
        "prompts": prompts,
        "dependencies": _as_list(raw_input, "dependencies")
        or _as_list(raw_input, "pythonDependencies"),
        "facts_url": raw_input.get("facts_url") or FACTS_URL_TEMPLATE.format(agent_id=agent_id),
    }
    for raw_key, field in (
        ("agentType", "agent_type"),
        ("buildTarget", "build_target"),
        ("isolation", "isolation"),
        ("subAgentCapabilities", "sub_agent_capabilities"),
        ("version", "version"),
        ("ttl", "ttl"),
        ("signature", "signature"),
    ):
        if raw_input.get(raw_key) is not None:
            fields[field] = raw_input[raw_key]

    try:
        descriptor = AgentPluginDescriptor.model_validate(fields)
    except PydanticValidationError as exc:
        problems = _format_problems(exc)
        raise ValidationError(
            f"Invalid agent configuration: {'; '.join(problems)}", problems
        ) from exc

    logger.debug(
        "Normalized agent %s (%s): %d tools, %d resources",
        descriptor.agent_name,
        descriptor.agent_id,
        len(descriptor.tools),
        len(descriptor.resources),
    )
    return descriptor
