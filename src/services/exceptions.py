"""Shared exceptions for juncture reconciliation."""
from typing import Any


class JunctureError(Exception):
    """Base class for errors raised while configuring or reconciling juncture tables."""


class ConfigurationError(JunctureError):
    """
    Raised when a relationship is configured incorrectly.

    Raised at attach time, before any data is touched: a required option is
    missing, both save and exclude scenarios are set, or a derived default name
    does not exist on the owner or juncture model.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class PersistenceError(JunctureError):
    """
    Raised when a juncture row cannot be created, updated or deleted.

    Carries the relation and related id that failed so the caller can report
    it. Rows already written in the same save cycle are not rolled back here;
    the enclosing session transaction is responsible for that.
    """

    _ACTION_VERBS = {  # noqa: RUF012
        "create": "creating",
        "update": "updating",
        "delete": "deleting",
    }

    def __init__(
        self,
        relation_name: str,
        related_id: Any,
        action: str,
        detail: str,
    ) -> None:
        self.relation_name = relation_name
        self.related_id = related_id
        self.action = action
        self.detail = detail
        verb = self._ACTION_VERBS.get(action, action)
        super().__init__(
            f"There was a problem {verb} a relationship "
            f"('{relation_name}', related id {related_id!r}): {detail}",
        )


class RelationNotLoadedError(JunctureError):
    """
    Raised when the ids of a stored owner's self-relation are read before they
    were loaded.

    Load the owner with `load_owner`, or read the field with
    `AccessorRegistry.load_field`, which loads it on demand.
    """

    def __init__(self, owner_name: str, relation_name: str) -> None:
        self.owner_name = owner_name
        self.relation_name = relation_name
        super().__init__(
            f"{owner_name}.{relation_name} has not been loaded; "
            "load the owner with load_owner() or read it with load_field()",
        )
