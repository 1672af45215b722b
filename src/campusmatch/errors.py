"""Error taxonomy for the matching and claims engine."""

from __future__ import annotations


class CampusMatchError(Exception):
    """Base class for engine errors."""


class ValidationError(CampusMatchError):
    """Malformed input (thresholds, weights, decisions). Nothing is persisted."""


class NotFoundError(CampusMatchError):
    """Unknown item, match, claim or decision version id."""

    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class CollaboratorUnavailable(CampusMatchError):
    """An external collaborator (image scoring, zone lookup, embeddings) failed or timed out."""

    def __init__(self, collaborator: str, detail: str = ""):
        msg = f"{collaborator} unavailable"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.collaborator = collaborator


class ConfigurationInvariantViolation(CampusMatchError):
    """Zero or more than one enabled AI configuration."""

    def __init__(self, enabled_count: int):
        super().__init__(f"expected exactly one enabled configuration, found {enabled_count}")
        self.enabled_count = enabled_count


class ConcurrentResolutionConflict(CampusMatchError):
    """The claim set of an item changed while it was being resolved."""

    def __init__(self, item_id: str):
        super().__init__(f"claim set for item {item_id} changed during resolution")
        self.item_id = item_id
