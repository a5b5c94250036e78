"""
Basic sanity tests for the tool catalog.

Run with:
$ pytest -q
"""

from agentify.core.schema import ToolSpec
from agentify.tools import (
    ANALYZE_TOOL,
    CHAT_TOOL,
    ToolCatalog,
    default_catalog,
)

# This is a stub tool for testing purposes.
ECHO_TOOL = ToolSpec(
    name="echo",
    parameters=[{"name": "text"}],
    implementation='return args["text"], nil',
)


def test_default_catalog_features() -> None:
    """The built-in catalog maps the three UI flags in a fixed order."""

    catalog = default_catalog()

    assert catalog.features() == ["chat", "automation", "analytics"]
    assert len(catalog) == 3
    assert "chat" in catalog
    assert "teleport" not in catalog


def test_default_catalogs_are_independent() -> None:
    """Registering into one catalog never leaks into another."""

    first = default_catalog()
    first.register("echo", ECHO_TOOL)

    assert "echo" not in default_catalog()


def test_expand_uses_catalog_order() -> None:
    catalog = ToolCatalog({"echo": ECHO_TOOL, "chat": CHAT_TOOL})

    assert [t.name for t in catalog.expand({"chat": True, "echo": 1})] == ["echo", "chat"]


def test_register_duplicate_feature() -> None:
    """Catalog should raise *ValueError* when a feature is registered twice."""

    catalog = ToolCatalog({"chat": CHAT_TOOL})
    try:
        catalog.register("chat", ECHO_TOOL)
    except ValueError as exc:
        assert "chat" in str(exc)
    else:  # pragma: no cover
        raise AssertionError("ValueError was not raised")


def test_register_duplicate_tool_name() -> None:
    """Two features may not contribute tools with the same name."""

    catalog = ToolCatalog({"analytics": ANALYZE_TOOL})
    try:
        catalog.register("insights", ANALYZE_TOOL)
    except ValueError as exc:
        assert "analyze" in str(exc)
    else:  # pragma: no cover
        raise AssertionError("ValueError was not raised")


def test_builtin_tools_reference_their_parameters() -> None:
    for _, spec in default_catalog():
        assert spec.referenced_parameters() or spec.parameters
        assert set(spec.referenced_parameters()) <= {p.name for p in spec.parameters}
