"""
Closed vocabularies for principals, resource kinds and actions.

Values are stored as plain strings; extending the vocabulary means adding
an enum member here.
"""
import enum

from app.core.errors import ValidationError


class PrincipalKind(str, enum.Enum):
    USER = "user"
    TEAM = "team"


class ResourceKind(str, enum.Enum):
    ORGANIZATION = "organization"
    WORKSPACE = "workspace"
    OBJECT_INSTANCE = "object_instance"
    OBJECT_TYPE = "object_type"
    WORKFLOW = "workflow"


class Action(str, enum.Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE_MEMBERS = "manage_members"
    MANAGE_TEAMS = "manage_teams"
    MANAGE_ROLES = "manage_roles"
    EXECUTE = "execute"


# Kinds whose permissions must be narrowed to one object type
OBJECT_SCOPED_KINDS = frozenset({ResourceKind.OBJECT_INSTANCE, ResourceKind.OBJECT_TYPE})


def parse_resource_kind(value: str | ResourceKind) -> ResourceKind:
    try:
        return ResourceKind(value)
    except ValueError:
        raise ValidationError(f"Unknown resource kind: {value}")


def parse_action(value: str | Action) -> Action:
    try:
        return Action(value)
    except ValueError:
        raise ValidationError(f"Unknown action: {value}")


def parse_principal_kind(value: str | PrincipalKind) -> PrincipalKind:
    try:
        return PrincipalKind(value)
    except ValueError:
        raise ValidationError(f"Unknown principal kind: {value}")
