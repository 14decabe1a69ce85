import json
from urllib.parse import parse_qs

import httpx
import pytest

from keycloak_otp import KeycloakAdminClient

BASE_URL = "https://kc.test"
REALM = "demo"
TOKEN = "test-token"
ADMIN_USER = "admin"
ADMIN_PASSWORD = "secret"


def _group_matches(group: dict, search: str) -> bool:
    """Keycloak 的组搜索会返回包含命中子组的父组"""
    if search in group["name"].lower():
        return True
    return any(_group_matches(sub, search) for sub in group.get("subGroups", []))


class FakeKeycloak:
    """内存中的 Keycloak Admin API，通过 httpx.MockTransport 挂到客户端上"""

    def __init__(self, realm: str = REALM):
        self.realm = realm
        self.users: dict[str, dict] = {}
        self.groups: list[dict] = []
        self.group_members: dict[str, list[str]] = {}
        self.roles: dict[str, dict] = {}
        self.user_roles: dict[str, list[str]] = {}
        self.count_override: int | None = None
        # user_id -> (status, body)
        self.fetch_failures: dict[str, tuple[int, str]] = {}
        self.update_failures: dict[str, tuple[int, str]] = {}
        self.role_mapping_failures: set[str] = set()
        self.role_failures: set[str] = set()
        # 每返回一页分页用户后调用，参数为该页的 first
        self.after_page = None
        self.requests: list[httpx.Request] = []
        self.puts: list[tuple[str, dict]] = []

    # ---- 数据准备 ----

    def add_user(self, user_id: str, username: str | None = None, required_actions=None, roles=(), **extra) -> dict:
        user = {
            "id": user_id,
            "username": username or user_id,
            "enabled": True,
            "email": f"{username or user_id}@example.com",
            **extra,
        }
        if required_actions is not None:
            user["requiredActions"] = list(required_actions)
        self.users[user_id] = user
        self.user_roles[user_id] = list(roles)
        for role in roles:
            self.add_role(role)
        return user

    def add_role(self, name: str) -> None:
        self.roles.setdefault(name, {"id": f"role-{name}", "name": name, "composite": False})

    def add_group(self, group_id: str, name: str, members=(), sub_groups=()) -> dict:
        group = {"id": group_id, "name": name, "path": f"/{name}", "subGroups": list(sub_groups)}
        self.groups.append(group)
        self.group_members[group_id] = list(members)
        return group

    # ---- 请求统计 ----

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        full = f"/admin/realms/{self.realm}{path}"
        return [r for r in self.requests if r.method == method and r.url.path == full]

    # ---- 路由 ----

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/realms/master/protocol/openid-connect/token":
            return self._token(request)

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"error": "HTTP 401 Unauthorized"})

        prefix = f"/admin/realms/{self.realm}"
        if not path.startswith(prefix):
            return httpx.Response(404, json={"error": "Realm not found."})
        parts = [p for p in path[len(prefix):].split("/") if p]

        if request.method == "GET":
            return self._get(request, parts)
        if request.method == "PUT" and len(parts) == 2 and parts[0] == "users":
            return self._put_user(request, parts[1])
        return httpx.Response(405)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if (
            form.get("username") == ADMIN_USER
            and form.get("password") == ADMIN_PASSWORD
            and form.get("grant_type") == "password"
            and form.get("client_id") == "admin-cli"
        ):
            return httpx.Response(200, json={"access_token": TOKEN, "expires_in": 60, "token_type": "Bearer"})
        return httpx.Response(401, json={"error": "invalid_grant", "error_description": "Invalid user credentials"})

    def _get(self, request: httpx.Request, parts: list[str]) -> httpx.Response:
        params = request.url.params

        if parts == ["users"]:
            users = list(self.users.values())
            if "first" in params:
                first = int(params["first"])
                users = users[first:first + int(params.get("max", 100))]
                if self.after_page is not None:
                    self.after_page(first)
            return httpx.Response(200, json=users)

        if parts == ["users", "count"]:
            count = self.count_override if self.count_override is not None else len(self.users)
            return httpx.Response(200, json=count)

        if len(parts) == 2 and parts[0] == "users":
            user_id = parts[1]
            if user_id in self.fetch_failures:
                status, body = self.fetch_failures[user_id]
                return httpx.Response(status, text=body)
            if user_id not in self.users:
                return httpx.Response(404, json={"error": "User not found"})
            return httpx.Response(200, json=self.users[user_id])

        if len(parts) == 4 and parts[0] == "users" and parts[2:] == ["role-mappings", "realm"]:
            user_id = parts[1]
            if user_id in self.role_mapping_failures:
                return httpx.Response(500, json={"error": "unknown_error"})
            return httpx.Response(200, json=[self.roles[r] for r in self.user_roles.get(user_id, [])])

        if parts == ["groups"]:
            search = params.get("search", "").lower()
            return httpx.Response(200, json=[g for g in self.groups if _group_matches(g, search)])

        if len(parts) == 3 and parts[0] == "groups" and parts[2] == "members":
            members = self.group_members.get(parts[1])
            if members is None:
                return httpx.Response(404, json={"error": "Could not find group by id"})
            return httpx.Response(200, json=[self.users[u] for u in members if u in self.users])

        if len(parts) == 2 and parts[0] == "roles":
            if parts[1] in self.role_failures:
                return httpx.Response(500, json={"error": "unknown_error"})
            role = self.roles.get(parts[1])
            if role is None:
                return httpx.Response(404, json={"error": "Could not find role"})
            return httpx.Response(200, json=role)

        if len(parts) == 3 and parts[0] == "roles" and parts[2] == "users":
            name = parts[1]
            if name not in self.roles:
                return httpx.Response(404, json={"error": "Could not find role"})
            return httpx.Response(200, json=[
                self.users[u] for u, roles in self.user_roles.items() if name in roles and u in self.users
            ])

        return httpx.Response(404, json={"error": "RESTEASY003210: Could not find resource"})

    def _put_user(self, request: httpx.Request, user_id: str) -> httpx.Response:
        body = json.loads(request.content)
        self.puts.append((user_id, body))
        if user_id in self.update_failures:
            status, text = self.update_failures[user_id]
            return httpx.Response(status, text=text)
        if user_id not in self.users:
            return httpx.Response(404, json={"error": "User not found"})
        self.users[user_id].update(body)
        return httpx.Response(204)


@pytest.fixture
def fake() -> FakeKeycloak:
    return FakeKeycloak()


@pytest.fixture
def transport(fake: FakeKeycloak) -> httpx.MockTransport:
    return httpx.MockTransport(fake.handler)


@pytest.fixture
def client(transport: httpx.MockTransport):
    with KeycloakAdminClient(BASE_URL, REALM, TOKEN, transport=transport) as c:
        yield c
