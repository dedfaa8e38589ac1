"""CloudMCP: cloud infrastructure tools for LLMs over the Model Context Protocol.

The package is layered:

- ``foundation``: errors, execution context, tool abstractions, tool registry, settings
- ``runtime``: middleware chain and plugins, rate limiters, retry, observability
- ``migration``: gradual routing between service-backed and provider-native tools
- ``providers``: provider framework and the Linode provider
- ``ext.mcp``: MCP transport adapter and the pipeline front
"""

__version__ = "0.1.0"
