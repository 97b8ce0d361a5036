"""
Transition Table for InsureFlow.

This module reads the lifecycle configuration file and answers which status
transitions are legal, and who may invoke them, for policies and claims.
The same table backs the client-side action mirror and the authoritative
in-memory backend.
"""

import logging
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple, Type, Union

import yaml
from pydantic import BaseModel

from ..exceptions import AuthorizationError, InvalidTransitionError
from ..models import AuthUser, ClaimStatus, EntityType, PolicyStatus, Role

logger = logging.getLogger(__name__)

STATUS_ENUMS: Dict[EntityType, Type] = {
    EntityType.POLICY: PolicyStatus,
    EntityType.CLAIM: ClaimStatus,
}

ROLE_RANK = {Role.USER: 0, Role.ADMIN: 1}


class Transition(BaseModel):
    """A single legal status change for a named action."""
    entity: EntityType
    action: str
    from_status: str
    to_status: str
    role: Role
    owner_scoped: bool = False


def role_satisfies(role: Role, required: Role) -> bool:
    """Check whether ``role`` meets the minimum ``required`` role."""
    return ROLE_RANK[role] >= ROLE_RANK[required]


class TransitionTable:
    """
    Lifecycle transitions expressed as data.

    Reads ``lifecycle.yaml`` to determine, for each entity and action, the
    ``{from, to, role}`` rows that make the action legal.
    """

    def __init__(self, config_dir: Optional[Union[str, Path]] = None,
                 config_file: str = "lifecycle.yaml"):
        """
        Initialize the transition table.

        Args:
            config_dir: Directory containing the lifecycle configuration.
                       Defaults to the engine directory
            config_file: Name of the YAML file inside ``config_dir``
        """
        if config_dir is None:
            config_dir = Path(__file__).parent
        else:
            config_dir = Path(config_dir)

        self.config_dir = config_dir
        self.config_file = config_file
        self.transitions: Dict[Tuple[EntityType, str], List[Transition]] = {}
        self.terminal: Dict[EntityType, FrozenSet[str]] = {}

        self._load_configurations()

    def _load_configurations(self):
        """Load and validate the lifecycle table from YAML."""
        table_file = self.config_dir / self.config_file
        if not table_file.exists():
            logger.error(f"Lifecycle table not found: {table_file}")
            raise FileNotFoundError(f"Lifecycle table not found: {table_file}")

        with open(table_file, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        transitions: Dict[Tuple[EntityType, str], List[Transition]] = {}
        terminal: Dict[EntityType, FrozenSet[str]] = {}

        for entity in EntityType:
            entity_config = config.get(entity.value, {}) or {}
            terminal[entity] = frozenset(
                self._status(entity, s) for s in entity_config.get("terminal", [])
            )

            for action, action_config in (entity_config.get("actions") or {}).items():
                owner_scoped = bool(action_config.get("owner_scoped", False))
                rows = []
                for row in action_config.get("transitions", []):
                    rows.append(Transition(
                        entity=entity,
                        action=action,
                        from_status=self._status(entity, row["from"]),
                        to_status=self._status(entity, row["to"]),
                        role=Role(row.get("role", Role.USER.value)),
                        owner_scoped=owner_scoped,
                    ))
                transitions[(entity, action)] = rows

        self.transitions = transitions
        self.terminal = terminal
        logger.info(f"Loaded {sum(len(r) for r in transitions.values())} lifecycle transitions "
                    f"from {table_file}")

    @staticmethod
    def _status(entity: EntityType, value: str) -> str:
        """Validate a configured status against the entity's enum."""
        try:
            return STATUS_ENUMS[entity](value).value
        except ValueError as e:
            raise ValueError(f"Unknown {entity.value} status in lifecycle table: {value}") from e

    def actions(self, entity: EntityType) -> List[str]:
        """Get the configured action names for an entity."""
        return [action for (ent, action) in self.transitions if ent == entity]

    def transitions_for(self, entity: EntityType, action: str) -> List[Transition]:
        """Get all rows configured for an action."""
        return list(self.transitions.get((entity, action), []))

    def is_terminal(self, entity: EntityType, status: str) -> bool:
        """Check whether no further transition leaves ``status``."""
        status = _value(status)
        if status in self.terminal.get(entity, frozenset()):
            return True
        return not any(
            row.from_status == status and row.to_status != status
            for rows in self.transitions.values() for row in rows if row.entity == entity
        )

    def authorize(self, entity: EntityType, action: str, user: AuthUser,
                  owner_id: Optional[str] = None) -> None:
        """
        Check role and ownership for an action, independent of status.

        Raises:
            AuthorizationError: If the actor may not invoke the action
        """
        rows = self.transitions_for(entity, action)
        if not rows:
            raise AuthorizationError(f"Unknown {entity.value} action: {action}")

        if not any(role_satisfies(user.role, row.role) for row in rows):
            raise AuthorizationError(
                f"Role {user.role.value} may not {action} a {entity.value}"
            )

        owner_scoped = any(row.owner_scoped for row in rows)
        if owner_scoped and not user.is_admin and owner_id is not None and owner_id != user.user_id:
            raise AuthorizationError(
                f"User {user.user_id} may only {action} their own {entity.value}"
            )

    def check(self, entity: EntityType, action: str, status: str, user: AuthUser,
              owner_id: Optional[str] = None, to_status: Optional[str] = None) -> Transition:
        """
        Resolve the transition an actor would perform.

        Args:
            entity: Entity type
            action: Named action (renew, suspend, submit, ...)
            status: Current status of the entity
            user: Acting user
            owner_id: Owner of the entity, for owner-scoped actions
            to_status: Requested target status when an action has several

        Returns:
            The matching Transition row

        Raises:
            AuthorizationError: If role or ownership do not permit the action
            InvalidTransitionError: If the action is not legal from ``status``
        """
        self.authorize(entity, action, user, owner_id)

        status = _value(status)
        target = _value(to_status) if to_status is not None else None
        candidates = [
            row for row in self.transitions_for(entity, action)
            if row.from_status == status and role_satisfies(user.role, row.role)
        ]
        if target is not None:
            candidates = [row for row in candidates if row.to_status == target]

        if not candidates:
            allowed = sorted({row.from_status for row in self.transitions_for(entity, action)})
            raise InvalidTransitionError(
                f"Cannot {action} {entity.value} in status {status}"
                + (f" to {target}" if target else "")
                + f". Allowed from: {', '.join(allowed) or 'none'}"
            )

        return candidates[0]

    def can(self, entity: EntityType, action: str, status: str, user: AuthUser,
            owner_id: Optional[str] = None) -> bool:
        """Check whether ``check`` would succeed."""
        try:
            self.check(entity, action, status, user, owner_id)
        except (AuthorizationError, InvalidTransitionError):
            return False
        return True

    def allowed_actions(self, entity: EntityType, status: str, user: AuthUser,
                        owner_id: Optional[str] = None) -> List[str]:
        """Get the actions an actor may invoke on an entity in ``status``."""
        return [
            action for action in self.actions(entity)
            if self.can(entity, action, status, user, owner_id)
        ]

    def reload_config(self):
        """Reload the lifecycle table (useful for dynamic updates)."""
        logger.info("Reloading lifecycle transition table")
        self._load_configurations()


def _value(status) -> str:
    """Normalise an enum member or raw string to its status value."""
    return status.value if hasattr(status, "value") else str(status)
