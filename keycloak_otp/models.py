"""
Keycloak 管理 API 数据模型

只解析本工具用到的字段，其它字段保持原样留在服务端：
更新用户时只提交 requiredActions，不回写整个 UserRepresentation。

参考:
https://www.keycloak.org/docs-api/latest/rest-api/index.html
"""

from dataclasses import dataclass, field
from enum import Enum


class KeycloakValidationError(ValueError):
    """响应数据或输入参数不合法"""
    pass


def _require_dict(data, kind: str) -> dict:
    if not isinstance(data, dict):
        raise KeycloakValidationError(f"{kind} 应为 JSON 对象，实际为 {type(data).__name__}")
    return data


def _require_list(data, kind: str) -> list:
    if not isinstance(data, list):
        raise KeycloakValidationError(f"{kind} 应为 JSON 数组，实际为 {type(data).__name__}")
    return data


# ============ 认证 ============

@dataclass
class TokenResponse:
    """
    token endpoint 响应

    只关心 access_token，refresh_token 不使用 (单次运行内不刷新)
    """
    access_token: str
    expires_in: int | None = None
    token_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TokenResponse":
        data = _require_dict(data, "token 响应")
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise KeycloakValidationError("token 响应中没有 access_token")
        return cls(
            access_token=token,
            expires_in=data.get("expires_in"),
            token_type=data.get("token_type"),
        )


# ============ 目录实体 ============

@dataclass
class KeycloakUser:
    """
    用户 (UserRepresentation 的子集)

    requiredActions:
    - 缺失 / null 与空列表等价
    - 顺序有意义，需要原样保留
    """
    id: str
    username: str = ""
    email: str | None = None
    firstName: str | None = None
    lastName: str | None = None
    enabled: bool | None = None
    requiredActions: list[str] | None = None

    def __post_init__(self):
        if not self.id:
            raise KeycloakValidationError("user.id 是必填字段")

    @property
    def display_name(self) -> str:
        """日志中用来标识用户"""
        return self.username or self.id

    @classmethod
    def from_dict(cls, data: dict) -> "KeycloakUser":
        data = _require_dict(data, "user")
        actions = data.get("requiredActions")
        if actions is not None:
            actions = _require_list(actions, "user.requiredActions")
            if not all(isinstance(a, str) for a in actions):
                raise KeycloakValidationError("user.requiredActions 只能包含字符串")
        return cls(
            id=data.get("id") or "",
            username=data.get("username") or "",
            email=data.get("email"),
            firstName=data.get("firstName"),
            lastName=data.get("lastName"),
            enabled=data.get("enabled"),
            requiredActions=actions,
        )

    @classmethod
    def list_from(cls, data) -> list["KeycloakUser"]:
        return [cls.from_dict(u) for u in _require_list(data, "user 列表")]


@dataclass
class KeycloakGroup:
    """
    组 (GroupRepresentation 的子集)

    search 接口返回的是树形结构，命中的子组在 subGroups 中
    """
    id: str
    name: str = ""
    path: str | None = None
    subGroups: list["KeycloakGroup"] = field(default_factory=list)

    def __post_init__(self):
        if not self.id:
            raise KeycloakValidationError("group.id 是必填字段")

    def walk(self):
        """先序遍历自身和所有子组"""
        yield self
        for sub in self.subGroups:
            yield from sub.walk()

    @classmethod
    def from_dict(cls, data: dict) -> "KeycloakGroup":
        data = _require_dict(data, "group")
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            path=data.get("path"),
            subGroups=[cls.from_dict(g) for g in data.get("subGroups") or []],
        )

    @classmethod
    def list_from(cls, data) -> list["KeycloakGroup"]:
        return [cls.from_dict(g) for g in _require_list(data, "group 列表")]


@dataclass
class KeycloakRole:
    """realm 角色 (RoleRepresentation 的子集)"""
    name: str
    id: str | None = None
    description: str | None = None
    composite: bool | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "KeycloakRole":
        data = _require_dict(data, "role")
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise KeycloakValidationError("role.name 是必填字段")
        return cls(
            name=name,
            id=data.get("id"),
            description=data.get("description"),
            composite=data.get("composite"),
        )

    @classmethod
    def list_from(cls, data) -> list["KeycloakRole"]:
        return [cls.from_dict(r) for r in _require_list(data, "role 列表")]


# ============ 错误响应 ============

@dataclass
class KeycloakError:
    """
    错误响应

    Keycloak 不同接口的错误格式不统一:
    - OIDC 接口: {"error": ..., "error_description": ...}
    - Admin 接口: {"errorMessage": ...} 或 {"error": ...}
    """
    status: int
    error: str | None = None
    detail: str | None = None

    @classmethod
    def from_dict(cls, data: dict, status_code: int = 0) -> "KeycloakError":
        return cls(
            status=status_code,
            error=data.get("error"),
            detail=data.get("error_description") or data.get("errorMessage"),
        )

    def __str__(self) -> str:
        msg = f"[{self.status}] {self.error or 'Unknown error'}"
        if self.detail:
            msg += f": {self.detail}"
        return msg


# ============ 目标集合 ============

@dataclass(frozen=True)
class TargetAccount:
    """待处理的账号"""
    id: str
    username: str = ""

    @property
    def display_name(self) -> str:
        return self.username or self.id

    @classmethod
    def from_user(cls, user: KeycloakUser) -> "TargetAccount":
        return cls(id=user.id, username=user.username)


@dataclass(frozen=True)
class TargetSet:
    """
    本次运行要处理的账号集合

    解析完成后不再变化；按 id 去重，保留首次出现的顺序
    """
    accounts: tuple[TargetAccount, ...] = ()
    warnings: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.accounts)

    def __iter__(self):
        return iter(self.accounts)

    @property
    def ids(self) -> list[str]:
        return [a.id for a in self.accounts]

    @classmethod
    def from_users(cls, users, warnings=()) -> "TargetSet":
        seen: dict[str, TargetAccount] = {}
        for user in users:
            if user.id not in seen:
                seen[user.id] = TargetAccount.from_user(user)
        return cls(accounts=tuple(seen.values()), warnings=tuple(warnings))


# ============ 运行结果 ============

class Outcome(str, Enum):
    """单个账号的处理结果"""
    APPLIED = "applied"
    ALREADY_PRESENT = "already-present"
    NOT_FOUND = "not-found"
    FETCH_FAILED = "fetch-failed"
    UPDATE_FAILED = "update-failed"

    @property
    def is_failure(self) -> bool:
        return self not in (Outcome.APPLIED, Outcome.ALREADY_PRESENT)


@dataclass
class AccountOutcome:
    """单个账号的处理记录"""
    account: TargetAccount
    outcome: Outcome
    detail: str | None = None

    def __str__(self) -> str:
        msg = f"{self.account.display_name} [id: {self.account.id}] {self.outcome.value}"
        if self.detail:
            msg += f": {self.detail}"
        return msg


@dataclass
class RunSummary:
    """一次运行的汇总结果"""
    action: str
    dry_run: bool = False
    records: list[AccountOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def record(self, account: TargetAccount, outcome: Outcome, detail: str | None = None) -> AccountOutcome:
        entry = AccountOutcome(account=account, outcome=outcome, detail=detail)
        self.records.append(entry)
        return entry

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.records if r.outcome is outcome)

    @property
    def total(self) -> int:
        return len(self.records)

    @property
    def applied(self) -> int:
        return self.count(Outcome.APPLIED)

    @property
    def already_present(self) -> int:
        return self.count(Outcome.ALREADY_PRESENT)

    @property
    def failures(self) -> list[AccountOutcome]:
        return [r for r in self.records if r.outcome.is_failure]

    @property
    def failed(self) -> int:
        return len(self.failures)

    def counts(self) -> dict[str, int]:
        """按结果分类计数 (包括 0)"""
        return {o.value: self.count(o) for o in Outcome}
