"""
Schema definitions for the canonical agent plugin descriptor.

These data models are the contract between the normalizer, the template renderer and the build
invoker.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.  Field aliases accept the camelCase keys used by the configuration UI.
"""

import re
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Union,
)

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# Implementation bodies read their arguments as ``args["<name>"]``.
PARAMETER_REFERENCE = re.compile(r'args\[\s*"([^"]+)"\s*\]')

DEFAULT_VERSION = "1.0.0"
DEFAULT_TTL = 3600
DEFAULT_SIGNATURE = "placeholder-signature"
FACTS_URL_TEMPLATE = "https://agentify.example.com/agents/{agent_id}"


class AgentType(str, Enum):
    """Agent type classification."""

    LLM = "llm"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    LOOP = "loop"


class BuildTarget(str, Enum):
    """Kind of module the compiler produces."""

    NATIVE_MODULE = "native-module"
    BYTECODE_MODULE = "bytecode-module"


class ResourceKind(str, Enum):
    """Content type of an embedded resource."""

    TEXT = "text"
    BINARY = "binary"
    STRUCTURED = "structured"


class IsolationLevel(str, Enum):
    """Isolation boundary the runtime host places around the agent."""

    PROCESS = "process"
    CONTAINER = "container"
    VM = "vm"


class ParameterSpec(BaseModel):
    """A single named argument of a tool."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    type: str = "string"
    description: str = ""
    required: bool = True
    default: Any = Field(None, validation_alias=AliasChoices("default", "defaultValue"))


class ToolSpec(BaseModel):
    """A tool exposed by the compiled agent, bound to an opaque implementation body."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique tool name")
    description: str = ""
    parameters: List[ParameterSpec] = Field(default_factory=list)
    implementation: str = Field(..., description="Source fragment placed inside the callback")
    return_type: str = Field(
        "object", validation_alias=AliasChoices("return_type", "returnType")
    )

    @model_validator(mode="after")
    def _check_parameters(self) -> "ToolSpec":
        declared = [param.name for param in self.parameters]
        duplicates = sorted({name for name in declared if declared.count(name) > 1})
        if duplicates:
            raise ValueError(f"tool '{self.name}' declares parameters more than once: {duplicates}")
        undeclared = sorted(set(self.referenced_parameters()) - set(declared))
        if undeclared:
            raise ValueError(
                f"tool '{self.name}' references undeclared parameters: {', '.join(undeclared)}"
            )
        return self

    def referenced_parameters(self) -> List[str]:
        """Parameter names the implementation body reads, in order of first use."""
        seen: List[str] = []
        for name in PARAMETER_REFERENCE.findall(self.implementation):
            if name not in seen:
                seen.append(name)
        return seen


class ResourceSpec(BaseModel):
    """Data shipped with (or referenced by) the compiled agent."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, ser_json_bytes="base64")

    name: str = Field(..., min_length=1)
    kind: ResourceKind = Field(
        ResourceKind.TEXT, validation_alias=AliasChoices("kind", "type")
    )
    content: Union[bytes, str] = ""
    embedded: bool = Field(True, validation_alias=AliasChoices("embedded", "isEmbedded"))

    @field_validator("kind", mode="before")
    @classmethod
    def _map_json_kind(cls, value: Any) -> Any:
        # The UI calls structured resources "json".
        if value == "json":
            return ResourceKind.STRUCTURED
        return value


class PromptSpec(BaseModel):
    """A named prompt template and the variables it interpolates."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    content: str
    variables: List[str] = Field(default_factory=list)


class IsolationLimits(BaseModel):
    """Resource and access limits enforced around the build and the runtime of the agent."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    level: IsolationLevel = Field(
        IsolationLevel.PROCESS, validation_alias=AliasChoices("level", "isolationLevel")
    )
    memory_mb: int = Field(512, gt=0, validation_alias=AliasChoices("memory_mb", "memory"))
    cpu_cores: float = Field(1, gt=0, validation_alias=AliasChoices("cpu_cores", "cpu"))
    time_limit_s: float = Field(
        60, gt=0, validation_alias=AliasChoices("time_limit_s", "timeLimit")
    )
    network_access: bool = Field(
        True, validation_alias=AliasChoices("network_access", "networkAccess")
    )
    filesystem_access: bool = Field(
        False, validation_alias=AliasChoices("filesystem_access", "fileSystemAccess")
    )


def _duplicates(names: List[str]) -> List[str]:
    return sorted({name for name in names if names.count(name) > 1})


class AgentPluginDescriptor(BaseModel):
    """Canonical, validated representation of an agent to be compiled."""

    model_config = ConfigDict(frozen=True)

    agent_id: str = Field(..., min_length=1, description="Globally unique identifier")
    agent_name: str = Field(..., min_length=1, description="URN-style alias")
    display_name: str = Field(..., min_length=1)
    description: str = ""
    personality: str = ""
    version: str = DEFAULT_VERSION
    agent_type: AgentType = AgentType.LLM
    build_target: BuildTarget = BuildTarget.NATIVE_MODULE
    tools: List[ToolSpec] = Field(default_factory=list)
    resources: List[ResourceSpec] = Field(default_factory=list)
    prompts: List[PromptSpec] = Field(default_factory=list)
    isolation: IsolationLimits = Field(default_factory=IsolationLimits)
    dependencies: List[str] = Field(default_factory=list)
    sub_agent_capabilities: bool = False
    # Metadata carried through to the manifest, never interpreted by the compiler.
    ttl: int = DEFAULT_TTL
    signature: str = DEFAULT_SIGNATURE
    facts_url: Optional[str] = None

    @field_validator("agent_id", "agent_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("dependencies")
    @classmethod
    def _as_set(cls, value: List[str]) -> List[str]:
        return sorted({dep.strip() for dep in value if dep and dep.strip()})

    @model_validator(mode="after")
    def _check_unique_names(self) -> "AgentPluginDescriptor":
        for label, names in (
            ("tool", [tool.name for tool in self.tools]),
            ("resource", [res.name for res in self.resources]),
            ("prompt", [prompt.name for prompt in self.prompts]),
        ):
            duplicates = _duplicates(names)
            if duplicates:
                raise ValueError(f"duplicate {label} names: {', '.join(duplicates)}")
        return self

    def tool_names(self) -> List[str]:
        """Tool names in declaration order."""
        return [tool.name for tool in self.tools]

    def as_raw_input(self) -> Dict[str, Any]:
        """
        Return a UI-shaped configuration that normalizes back to this descriptor.

        Everything already expanded (catalog tools, settings resources, the system prompt) is
        passed explicitly, so ``features`` and ``settings`` stay empty.
        """
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "name": self.display_name,
            "personality": self.personality,
            "instructions": self.description,
            "features": {},
            "settings": {},
            "version": self.version,
            "agentType": self.agent_type.value,
            "buildTarget": self.build_target.value,
            "tools": [tool.model_dump() for tool in self.tools],
            "resources": [res.model_dump() for res in self.resources],
            "prompts": [prompt.model_dump() for prompt in self.prompts],
            "isolation": self.isolation.model_dump(),
            "dependencies": list(self.dependencies),
            "subAgentCapabilities": self.sub_agent_capabilities,
            "ttl": self.ttl,
            "signature": self.signature,
            "facts_url": self.facts_url,
        }
