"""Diagnostics restricted to one triangle configuration.

A run loops over thousands of (k1, k2, k3) triangles; printing intermediate
quantities for all of them is useless. The selector lets equation code emit
diagnostics unconditionally and keeps only those of the configured triangle.

References:
    SONG source: include/perturbations2_macros.h (printf_k_debug)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger


@dataclass(frozen=True)
class DebugSelector:
    """Equality filter on the active (index_k1, index_k2, index_k3) triple.

    target=None never matches.
    """

    target: Optional[tuple[int, int, int]] = None

    def matches(self, active: tuple[int, int, int]) -> bool:
        return self.target is not None and tuple(active) == tuple(self.target)

    def emit(
        self, active: tuple[int, int, int], message: str, *args, depth: int = 1, **kwargs
    ) -> bool:
        """Log `message` (loguru formatting) if `active` is the target triple.

        `depth` selects the frame named in the record: 1 is the direct
        caller, and each wrapper in between adds one.
        Returns whether a record was emitted.
        """
        if not self.matches(active):
            return False
        k1, k2, k3 = active
        logger.opt(depth=depth).bind(index_k1=k1, index_k2=k2, index_k3=k3).debug(
            message, *args, **kwargs
        )
        return True
