"""Error types for jaxSONG.

All three are fatal: they signal a configuration mistake or a sequencing bug
in the caller, and any of them invalidates the physical result. Nothing in the
package catches them.
"""


class JaxSongError(Exception):
    """Base class for jaxSONG errors."""


class ConfigurationError(JaxSongError, ValueError):
    """Invalid or missing run parameter, detected at setup.

    Raised for negative or inconsistent truncation orders, unparsable or
    duplicated parameter-file entries, and E/B writes when polarization
    is switched off.
    """


class IndexOutOfRangeError(JaxSongError, IndexError):
    """Direct table lookup called with an invalid (n, l, m)."""


class StaleCacheError(JaxSongError, RuntimeError):
    """Rotation or product cache read before it was built for the current triangle."""
