"""Built-in command plugins, discovered recursively by ``osintrix.plugin.discover``."""
