"""Pluggy hook specifications for osintrix command plugins.

All hooks use the "osintrix" namespace and are validated by pluggy at
registration time.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("osintrix")


class OsintrixSpec:
    """Hook specifications for osintrix plugins."""

    @hookspec
    def osintrix_command(self) -> dict[str, Any]:
        """Describe one chat command.

        Returns:
            Dict with keys:
                - name (str): command word, unique across all plugins (e.g. "ceknik")
                - handler: async callable ``(request, context) -> CommandOutcome``
                - category (str): menu section (e.g. "osint", "user", "owner")
                - cost (int): quota units spent on success (default 0)
                - description (str): one-line menu text
                - privileged_only (bool): reserve the command for owners
        """
