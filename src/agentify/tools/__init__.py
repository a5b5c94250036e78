"""
Built-in tool catalog for Agentify.

A catalog maps UI feature flags to the tool each flag contributes.  Catalogs are plain objects
handed to the normalizer, so callers and tests can swap in their own instead of mutating a
process-wide registry.
"""

import logging
from typing import (
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
)

from agentify.core.schema import (
    ParameterSpec,
    ToolSpec,
)

logger = logging.getLogger(__name__)


class ToolCatalog:
    """
    Ordered mapping from feature-flag name to the ToolSpec it enables.

    Registration order is expansion order: enabling ``chat`` and ``analytics`` always yields the
    chat tool first, whatever order the flags arrive in.
    """

    def __init__(self, entries: Optional[Mapping[str, ToolSpec]] = None) -> None:
        self._entries: Dict[str, ToolSpec] = {}
        for feature, spec in (entries or {}).items():
            self.register(feature, spec)

    def register(self, feature: str, spec: ToolSpec) -> None:
        """
        Add *spec* as the tool contributed by *feature*.

        Parameters
        ----------
        feature: str
            Feature-flag name as sent by the configuration UI.
        spec: ToolSpec
            Tool appended to the descriptor when the flag is enabled.
        Raises
        ------
        ValueError
            If the feature or the tool name is already in the catalog.
        """
        if feature in self._entries:
            raise ValueError(f"Feature '{feature}' is already registered.")
        if spec.name in {existing.name for existing in self._entries.values()}:
            raise ValueError(f"Tool '{spec.name}' is already provided by another feature.")
        logger.debug("Registering feature '%s' -> tool '%s'", feature, spec.name)
        self._entries[feature] = spec

    def expand(self, features: Mapping[str, object]) -> List[ToolSpec]:
        """Return one tool per enabled feature, in catalog order.  Unknown features are ignored."""
        return [spec for feature, spec in self._entries.items() if features.get(feature)]

    def features(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, feature: object) -> bool:
        return feature in self._entries

    def __iter__(self) -> Iterator[Tuple[str, ToolSpec]]:
        return iter(self._entries.items())

    def __len__(self) -> int:
        return len(self._entries)


CHAT_TOOL = ToolSpec(
    name="chat",
    description="Chat with the user",
    parameters=[ParameterSpec(name="input", type="string", description="The user input")],
    implementation='return map[string]interface{}{"message": args["input"]}, nil',
    return_type="object",
)

AUTOMATE_TOOL = ToolSpec(
    name="automate",
    description="Automate a task",
    parameters=[ParameterSpec(name="task", type="string", description="The task to automate")],
    implementation='return map[string]interface{}{"success": true, "taskId": "task-123"}, nil',
    return_type="object",
)

ANALYZE_TOOL = ToolSpec(
    name="analyze",
    description="Analyze data",
    parameters=[ParameterSpec(name="data", type="string", description="The data to analyze")],
    implementation=(
        'return map[string]interface{}{"insights": []string{"Insight 1", "Insight 2"}}, nil'
    ),
    return_type="object",
)


def default_catalog() -> ToolCatalog:
    """Return a fresh catalog with the chat, automation and analytics features."""
    return ToolCatalog(
        {
            "chat": CHAT_TOOL,
            "automation": AUTOMATE_TOOL,
            "analytics": ANALYZE_TOOL,
        }
    )
