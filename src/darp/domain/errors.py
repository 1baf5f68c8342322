"""Domain-level exception hierarchy.

Purpose
-------
Expose the stable error taxonomy shared by the mutation API, the resolution
rules, the deploy pass, and the adapters. The hierarchy lives in the domain
layer so outer layers may depend on it without inner layers importing them.

Contents
--------
* :class:`DarpError` – umbrella base class for every user-facing failure.
* :class:`NotFound` – a referenced domain, environment, service, or field is
  missing.
* :class:`AlreadyExists` – a uniqueness rule rejected an "add" operation.
* :class:`InvalidInput` – malformed user input (boolean flags, engine names).
* :class:`InvalidFormat` – a persisted document has the wrong shape.
* :class:`IOFailure` – filesystem or subprocess failures.
* :class:`PreconditionFailed` – an operation cannot proceed in the current
  state (no domains, no image, no environment).

System Role
-----------
The core raises these and never catches them. The CLI catches
:class:`DarpError` once and turns it into a one-line message with exit code 1.
"""

from __future__ import annotations


class DarpError(Exception):
    """Base type for all exceptions emitted by ``darp``.

    Why
    ----
    Provide a single catch-all type for the CLI boundary, which only needs to
    print the message and exit non-zero.
    """


class NotFound(DarpError):
    """Raised when a referenced entity or field does not exist.

    Typical Sources
    ---------------
    "remove" and "set on existing" mutations, domain lookups from the current
    working directory, environment selection at shell/serve time.
    """


class AlreadyExists(DarpError):
    """Raised when an "add" operation would violate a uniqueness rule.

    Covers duplicate domain locations, duplicate domain names, host ports that
    are already mapped, and identical volume pairs.
    """


class InvalidInput(DarpError):
    """Raised for malformed user input; the message names the accepted grammar."""


class InvalidFormat(DarpError):
    """Raised when a persisted document cannot be parsed into the data model.

    The store adapter catches this to fall back to an empty configuration.
    """


class IOFailure(DarpError):
    """Wraps filesystem and subprocess failures with the underlying cause."""


class PreconditionFailed(DarpError):
    """Signals that the operation cannot run in the current configuration state.

    The message always carries the remediating command when one exists.
    """
