"""
Keycloak OTP 批量配置

为一组 Keycloak 用户添加 CONFIGURE_TOTP required action，下次登录时强制绑定 OTP。
按组、整个 realm 或角色选择用户；重复运行不会产生重复的 action。
"""

from .models import (
    KeycloakUser,
    KeycloakGroup,
    KeycloakRole,
    KeycloakError,
    KeycloakValidationError,
    TokenResponse,
    TargetAccount,
    TargetSet,
    Outcome,
    AccountOutcome,
    RunSummary,
)

from .client import (
    KeycloakAdminClient,
    KeycloakClientError,
    AuthenticationError,
    NotFoundError,
    authenticate,
)
from .merge import merge_required_actions
from .resolver import (
    parse_role_names,
    resolve_group,
    resolve_realm,
    resolve_roles_paged,
    resolve_roles_direct,
)
from .reconciler import reconcile, reconcile_account

__all__ = [
    # Client
    "KeycloakAdminClient",
    "KeycloakClientError",
    "AuthenticationError",
    "NotFoundError",
    "authenticate",
    # Models
    "KeycloakUser",
    "KeycloakGroup",
    "KeycloakRole",
    "KeycloakError",
    "KeycloakValidationError",
    "TokenResponse",
    "TargetAccount",
    "TargetSet",
    "Outcome",
    "AccountOutcome",
    "RunSummary",
    # Merge
    "merge_required_actions",
    # Resolver
    "parse_role_names",
    "resolve_group",
    "resolve_realm",
    "resolve_roles_paged",
    "resolve_roles_direct",
    # Reconcile
    "reconcile",
    "reconcile_account",
]
