# Copyright (C) 2024-2025 The ctvpool developers
#
# This file is part of ctvpool
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of ctvpool, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.


class PoolError(Exception):
    """Base class of every error raised by ctvpool."""


class ConfigurationError(PoolError):
    """The pool configuration can not produce a valid tree (too few
    participants, non-positive net share, invalid address or network).

    Raised before any tree work starts."""


class ConstructionError(PoolError):
    """Building the covenant tree failed (empty leaf set, oversized script,
    inconsistent amounts, colliding outputs). No partial tree is exposed."""


class CommitmentMismatchError(ConstructionError):
    """A settlement transaction does not match the commitment of the leaf it
    spends. The network would reject it, so this always indicates a bug."""


class ResolutionError(PoolError):
    """A settlement step was requested that the tree can not serve, e.g. an
    unknown path or a participant that already exited."""


class ExternalError(PoolError):
    """A failure of an external collaborator (the Bitcoin node). The
    settlement state is unchanged and the same step may be retried."""
