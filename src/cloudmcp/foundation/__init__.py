"""Foundation layer: errors, execution context, tools, registry and settings."""
