"""
Role based authorization for the audit platform.

The role to permission table below is the single source of truth for what a
role may do. Menus are filtered against it so a client only ever renders
entries the active role can actually use.
"""
import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple


class Role(str, enum.Enum):
    """The four fixed system roles."""
    ADMINISTRADOR = "administrador"
    GERENTE = "gerente"
    AUDITOR = "auditor"
    CLIENTE = "cliente"


class Resource(str, enum.Enum):
    """Resources a permission can refer to."""
    USERS = "users"
    ROLES = "roles"
    AUDITS = "audits"
    FINDINGS = "findings"
    REPORTS = "reports"
    CLIENTS = "clients"
    SETTINGS = "settings"
    NOTIFICATIONS = "notifications"


class Action(str, enum.Enum):
    """Actions that can be performed on a resource."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    APPROVE = "approve"
    ASSIGN = "assign"


# Session role used for every EXTERNAL account
EXTERNAL_SESSION_ROLE = Role.CLIENTE.value


@dataclass(frozen=True)
class Permission:
    """A resource:action pair, e.g. ``audits:approve``."""
    resource: Resource
    action: Action

    @classmethod
    def from_string(cls, value: str) -> "Permission":
        """
        Parse a permission string.

        Args:
            value: Permission in ``resource:action`` form.

        Returns:
            The parsed Permission.

        Raises:
            ValueError: If the string is malformed or names an unknown resource or action.
        """
        resource, sep, action = value.partition(":")
        if not sep:
            raise ValueError(f"Invalid permission format: {value}")
        return cls(Resource(resource), Action(action))

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"


def _perms(resource: Resource, *actions: Action) -> List[Permission]:
    return [Permission(resource, action) for action in actions]


ROLE_PERMISSIONS: Dict[Role, Tuple[Permission, ...]] = {
    Role.ADMINISTRADOR: tuple(
        _perms(Resource.USERS, Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)
        + _perms(Resource.ROLES, Action.READ)
        + _perms(Resource.AUDITS, Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE,
                 Action.APPROVE, Action.ASSIGN)
        + _perms(Resource.FINDINGS, Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)
        + _perms(Resource.REPORTS, Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE,
                 Action.EXPORT)
        + _perms(Resource.CLIENTS, Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)
        + _perms(Resource.SETTINGS, Action.READ, Action.UPDATE)
        + _perms(Resource.NOTIFICATIONS, Action.READ, Action.CREATE)
    ),
    Role.GERENTE: tuple(
        _perms(Resource.USERS, Action.READ)
        + _perms(Resource.AUDITS, Action.CREATE, Action.READ, Action.UPDATE, Action.APPROVE,
                 Action.ASSIGN)
        + _perms(Resource.FINDINGS, Action.READ, Action.UPDATE)
        + _perms(Resource.REPORTS, Action.CREATE, Action.READ, Action.EXPORT)
        + _perms(Resource.CLIENTS, Action.READ)
        + _perms(Resource.NOTIFICATIONS, Action.READ)
    ),
    Role.AUDITOR: tuple(
        _perms(Resource.AUDITS, Action.READ, Action.UPDATE)
        + _perms(Resource.FINDINGS, Action.CREATE, Action.READ, Action.UPDATE)
        + _perms(Resource.REPORTS, Action.CREATE, Action.READ)
        + _perms(Resource.CLIENTS, Action.READ)
        + _perms(Resource.NOTIFICATIONS, Action.READ)
    ),
    Role.CLIENTE: tuple(
        _perms(Resource.AUDITS, Action.READ)
        + _perms(Resource.FINDINGS, Action.READ)
        + _perms(Resource.REPORTS, Action.READ)
        + _perms(Resource.NOTIFICATIONS, Action.READ)
    ),
}


@dataclass(frozen=True)
class MenuItem:
    """A navigation entry and the permissions required to see it."""
    id: str
    label: str
    route: Optional[str] = None
    icon: Optional[str] = None
    required_permissions: Tuple[Permission, ...] = ()
    children: Optional[Tuple["MenuItem", ...]] = None
    order: int = 0

    def to_dict(self) -> dict:
        """Serialize to the response shape expected by the front end."""
        data = {
            "id": self.id,
            "label": self.label,
            "route": self.route,
            "icon": self.icon,
            "order": self.order,
            "requiredPermissions": [str(p) for p in self.required_permissions],
        }
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data


def _menu(id, label, route, *required, icon=None, order=0, children=None) -> MenuItem:
    return MenuItem(
        id=id,
        label=label,
        route=route,
        icon=icon,
        required_permissions=tuple(required),
        children=tuple(children) if children is not None else None,
        order=order,
    )


MENU_CONFIG: Tuple[MenuItem, ...] = (
    _menu("dashboard", "Dashboard", "/dashboard", icon="dashboard", order=1),
    _menu(
        "users", "Usuarios", "/users", Permission(Resource.USERS, Action.READ),
        icon="users", order=2,
        children=[
            _menu("users-list", "Lista de Usuarios", "/users",
                  Permission(Resource.USERS, Action.READ)),
            _menu("users-create", "Crear Usuario", "/users/create",
                  Permission(Resource.USERS, Action.CREATE)),
        ],
    ),
    _menu(
        "audits", "Auditorías", "/audits", Permission(Resource.AUDITS, Action.READ),
        icon="clipboard-check", order=3,
        children=[
            _menu("audits-list", "Mis Auditorías", "/audits",
                  Permission(Resource.AUDITS, Action.READ)),
            _menu("audits-create", "Nueva Auditoría", "/audits/create",
                  Permission(Resource.AUDITS, Action.CREATE)),
            _menu("audits-approve", "Aprobar Auditorías", "/audits/approve",
                  Permission(Resource.AUDITS, Action.APPROVE)),
            _menu("audits-assign", "Asignar Auditorías", "/audits/assign",
                  Permission(Resource.AUDITS, Action.ASSIGN)),
        ],
    ),
    _menu(
        "findings", "Hallazgos", "/findings", Permission(Resource.FINDINGS, Action.READ),
        icon="alert-circle", order=4,
        children=[
            _menu("findings-list", "Lista de Hallazgos", "/findings",
                  Permission(Resource.FINDINGS, Action.READ)),
            _menu("findings-create", "Registrar Hallazgo", "/findings/create",
                  Permission(Resource.FINDINGS, Action.CREATE)),
        ],
    ),
    _menu(
        "reports", "Reportes", "/reports", Permission(Resource.REPORTS, Action.READ),
        icon="file-text", order=5,
        children=[
            _menu("reports-list", "Ver Reportes", "/reports",
                  Permission(Resource.REPORTS, Action.READ)),
            _menu("reports-create", "Generar Reporte", "/reports/create",
                  Permission(Resource.REPORTS, Action.CREATE)),
            _menu("reports-export", "Exportar Reportes", "/reports/export",
                  Permission(Resource.REPORTS, Action.EXPORT)),
        ],
    ),
    _menu(
        "clients", "Clientes", "/clients", Permission(Resource.CLIENTS, Action.READ),
        icon="briefcase", order=6,
        children=[
            _menu("clients-list", "Lista de Clientes", "/clients",
                  Permission(Resource.CLIENTS, Action.READ)),
            _menu("clients-create", "Registrar Cliente", "/clients/create",
                  Permission(Resource.CLIENTS, Action.CREATE)),
        ],
    ),
    _menu("settings", "Configuración", "/settings", Permission(Resource.SETTINGS, Action.READ),
          icon="settings", order=7),
    _menu("notifications", "Notificaciones", "/notifications",
          Permission(Resource.NOTIFICATIONS, Action.READ), icon="bell", order=8),
)


class AuthorizationLookup:
    """
    Maps a role to its permission set and to its filtered menu tree.
    """

    def __init__(
        self,
        role_permissions: Optional[Dict[Role, Iterable[Permission]]] = None,
        menu_config: Optional[Iterable[MenuItem]] = None,
    ):
        source = role_permissions if role_permissions is not None else ROLE_PERMISSIONS
        self.role_permissions: Dict[Role, FrozenSet[Permission]] = {
            role: frozenset(perms) for role, perms in source.items()
        }
        self._ordered: Dict[Role, Tuple[Permission, ...]] = {
            role: tuple(perms) for role, perms in source.items()
        }
        self.menu_config = tuple(menu_config if menu_config is not None else MENU_CONFIG)

    @staticmethod
    def _coerce_role(role) -> Optional[Role]:
        if isinstance(role, Role):
            return role
        try:
            return Role(role)
        except ValueError:
            return None

    # PUBLIC_INTERFACE
    def get_permissions(self, role) -> Tuple[Permission, ...]:
        """
        Get all permissions for a role.

        Args:
            role: Role enum member or its string value.

        Returns:
            Permissions in declaration order; empty for unknown roles.
        """
        resolved = self._coerce_role(role)
        if resolved is None:
            return ()
        return self._ordered.get(resolved, ())

    # PUBLIC_INTERFACE
    def get_permissions_as_strings(self, role) -> List[str]:
        """Get all permissions for a role rendered as ``resource:action`` strings."""
        return [str(p) for p in self.get_permissions(role)]

    # PUBLIC_INTERFACE
    def has_permission(self, role, permission: Permission) -> bool:
        """Check if a role holds a specific permission."""
        resolved = self._coerce_role(role)
        if resolved is None:
            return False
        return permission in self.role_permissions.get(resolved, frozenset())

    # PUBLIC_INTERFACE
    def has_all_permissions(self, role, permissions: Iterable[Permission]) -> bool:
        """Check if a role holds every one of the given permissions."""
        return all(self.has_permission(role, p) for p in permissions)

    # PUBLIC_INTERFACE
    def has_any_permission(self, role, permissions: Iterable[Permission]) -> bool:
        """Check if a role holds at least one of the given permissions."""
        return any(self.has_permission(role, p) for p in permissions)

    # PUBLIC_INTERFACE
    def get_menus_for_role(self, role) -> List[MenuItem]:
        """
        Get the menu tree visible to a role.

        An item is kept only when the role holds all of its required permissions.
        Parent items whose children were all filtered out are dropped.

        Args:
            role: Role enum member or its string value.

        Returns:
            Visible menu items sorted by their order.
        """
        resolved = self._coerce_role(role)
        granted = self.role_permissions.get(resolved, frozenset()) if resolved else frozenset()
        visible = self._filter(self.menu_config, granted)
        return sorted(visible, key=lambda item: item.order)

    def _filter(self, items: Iterable[MenuItem], granted: FrozenSet[Permission]) -> List[MenuItem]:
        result = []
        for item in items:
            if not all(p in granted for p in item.required_permissions):
                continue
            children = item.children
            if children is not None:
                children = tuple(self._filter(children, granted))
                if not children:
                    continue
            result.append(
                MenuItem(
                    id=item.id,
                    label=item.label,
                    route=item.route,
                    icon=item.icon,
                    required_permissions=item.required_permissions,
                    children=children,
                    order=item.order,
                )
            )
        return result


# Default lookup for common use
default_authorization_lookup = AuthorizationLookup()
