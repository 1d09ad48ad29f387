"""Per-run state shared by every stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .diagnostics import Diagnostic, Diagnostics
from .intern import Interner

logger = logging.getLogger(__name__)


@dataclass
class Context:
    """Interner plus diagnostics for one pipeline run.

    Stages receive the context explicitly; nothing is stored at module level.
    """

    interner: Interner = field(default_factory=Interner)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def report(self, diag: Diagnostic) -> Diagnostic:
        logger.debug("%s", diag)
        return self.diagnostics.add(diag)
