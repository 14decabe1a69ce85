"""
Keycloak Admin REST 客户端

使用 httpx 实现，处理 Keycloak 的一些特有行为：
- 管理员令牌固定在 master realm 上用 admin-cli 获取
- 用户列表使用 first/max 偏移分页，总数需要单独查 /users/count
- 组 search 返回树形结构
- PUT /users/{id} 成功时返回 204 空响应
"""

import logging
from collections.abc import Iterator
from urllib.parse import quote

import httpx
from httpx import Client, Response

from .config import ADMIN_CLIENT_ID, DEFAULT_TIMEOUT, PAGE_SIZE, TOKEN_REALM
from .models import (
    KeycloakError,
    KeycloakGroup,
    KeycloakRole,
    KeycloakUser,
    KeycloakValidationError,
    TokenResponse,
)

logger = logging.getLogger(__name__)


class KeycloakClientError(Exception):
    """Keycloak 客户端错误"""
    def __init__(self, message: str, error: KeycloakError | None = None, body: str | None = None):
        super().__init__(message)
        self.error = error
        self.body = body


class NotFoundError(KeycloakClientError):
    """资源不存在 (404 或空的查询结果)"""
    pass


class AuthenticationError(KeycloakClientError):
    """无法获取管理员令牌"""
    pass


def _segment(value: str) -> str:
    """URL path 参数转义"""
    return quote(value, safe="")


# ============ 认证 ============

def authenticate(
    base_url: str,
    username: str,
    password: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.BaseTransport | None = None,
) -> str:
    """
    用管理员账号换取 access token

    只请求一次，不重试、不刷新。

    Args:
        base_url: Keycloak 根地址，如 https://keycloak.example.com
        username: 管理员用户名
        password: 管理员密码
        timeout: 请求超时时间
        transport: 自定义 transport (测试用)

    Returns:
        access token 字符串

    Raises:
        KeycloakValidationError: 参数为空
        AuthenticationError: 响应中没有 access_token、凭据错误或无法连接
    """
    for name, value in (("base_url", base_url), ("username", username), ("password", password)):
        if not value:
            raise KeycloakValidationError(f"{name} 不能为空")

    url = f"{base_url.rstrip('/')}/realms/{TOKEN_REALM}/protocol/openid-connect/token"
    form = {
        "username": username,
        "password": password,
        "grant_type": "password",
        "client_id": ADMIN_CLIENT_ID,
    }

    logger.debug("请求管理员令牌: %s", url)
    try:
        with Client(timeout=timeout, transport=transport) as client:
            resp = client.post(url, data=form)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise AuthenticationError(f"无法连接 {url}: {e}") from e

    try:
        token = TokenResponse.from_dict(resp.json())
    except (ValueError, KeycloakValidationError) as e:
        error = None
        try:
            error = KeycloakError.from_dict(resp.json(), resp.status_code)
        except (ValueError, AttributeError):
            pass
        message = str(error) if error and error.error else f"[{resp.status_code}] {e}"
        raise AuthenticationError(f"获取令牌失败 {message}", error, resp.text) from e

    return token.access_token


class KeycloakAdminClient:
    """
    Keycloak Admin REST 客户端 (单个 realm)

    所有路径相对于 {base_url}/admin/realms/{realm}
    """

    def __init__(
        self,
        base_url: str,
        realm: str,
        token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        初始化客户端

        Args:
            base_url: Keycloak 根地址
            realm: 目标 realm
            token: authenticate() 得到的 Bearer token
            timeout: 请求超时时间
            transport: 自定义 transport (测试用)
        """
        if not realm:
            raise KeycloakValidationError("realm 不能为空")
        self.realm = realm
        self.client = Client(
            base_url=f"{base_url.rstrip('/')}/admin/realms/{_segment(realm)}",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        """关闭连接"""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ============ 底层请求方法 ============

    def _raise_for_error(self, resp: Response) -> None:
        """非 2xx 响应统一转换为 KeycloakClientError"""
        if resp.is_success:
            return

        try:
            error = KeycloakError.from_dict(resp.json(), resp.status_code)
        except (ValueError, AttributeError):
            error = KeycloakError(status=resp.status_code, detail=resp.text or None)

        message = f"{resp.request.method} {resp.request.url.path} 失败 {error}"
        if resp.status_code == 404:
            raise NotFoundError(message, error, resp.text)
        raise KeycloakClientError(message, error, resp.text)

    def _get(self, path: str, params: dict = None):
        """GET 请求，返回解析后的 JSON"""
        resp = self.client.get(path, params=params)
        self._raise_for_error(resp)
        try:
            return resp.json()
        except ValueError as e:
            raise KeycloakClientError(f"GET {path} 返回的不是 JSON: {resp.text[:200]}", body=resp.text) from e

    def _put(self, path: str, json: dict) -> str:
        """PUT 请求，返回原始响应体 (成功时为空)"""
        resp = self.client.put(path, json=json)
        self._raise_for_error(resp)
        return resp.text

    # ============ 分页迭代器 ============

    def iter_user_pages(self, total: int, page_size: int = PAGE_SIZE) -> Iterator[list[KeycloakUser]]:
        """
        按 first/max 偏移分页遍历用户

        从 offset 0 开始，每次前进 page_size，直到 offset >= total。
        total 来自 count_users()，运行期间用户数可能变化，遇到空页提前结束。

        Yields:
            每一页的用户列表
        """
        if page_size <= 0:
            raise KeycloakValidationError("page_size 必须大于 0")

        offset = 0
        while offset < total:
            page = self.list_users_page(offset, page_size)
            logger.debug("用户分页 first=%d max=%d -> %d", offset, page_size, len(page))
            if not page:
                break
            yield page
            offset += page_size

    # ============ User 操作 ============

    def list_users(self) -> list[KeycloakUser]:
        """列出 realm 内所有用户 (单次请求，不分页)"""
        return KeycloakUser.list_from(self._get("/users"))

    def count_users(self) -> int:
        """realm 用户总数"""
        data = self._get("/users/count")
        if isinstance(data, bool) or not isinstance(data, int):
            raise KeycloakValidationError(f"/users/count 应返回整数，实际为 {data!r}")
        return data

    def list_users_page(self, first: int, max_results: int) -> list[KeycloakUser]:
        """获取一页用户"""
        data = self._get("/users", params={"first": first, "max": max_results})
        return KeycloakUser.list_from(data)

    def get_user(self, user_id: str) -> KeycloakUser:
        """
        获取单个用户

        Raises:
            NotFoundError: 用户不存在
        """
        return KeycloakUser.from_dict(self._get(f"/users/{_segment(user_id)}"))

    def get_user_realm_roles(self, user_id: str) -> list[KeycloakRole]:
        """用户直接分配的 realm 角色"""
        data = self._get(f"/users/{_segment(user_id)}/role-mappings/realm")
        return KeycloakRole.list_from(data)

    def update_required_actions(self, user_id: str, actions: list[str]) -> str:
        """
        更新用户的 requiredActions

        请求体只包含 requiredActions，其它字段不会被覆盖

        Returns:
            响应体原文，成功时为空字符串
        """
        payload = {"requiredActions": list(actions)}
        return self._put(f"/users/{_segment(user_id)}", payload)

    # ============ Group 操作 ============

    def search_groups(self, name: str) -> list[KeycloakGroup]:
        """按名称搜索组 (Keycloak 做的是模糊匹配)"""
        return KeycloakGroup.list_from(self._get("/groups", params={"search": name}))

    def find_group_by_name(self, name: str, exact: bool = False) -> KeycloakGroup | None:
        """
        按名称查找组

        exact=False 时取搜索结果的第一个；exact=True 时在结果树中找名称完全相同的组
        """
        groups = self.search_groups(name)
        if not groups:
            return None
        if not exact:
            if len(groups) > 1:
                logger.warning(
                    "组名 '%s' 匹配到 %d 个组，使用第一个: %s",
                    name, len(groups), groups[0].path or groups[0].name,
                )
            return groups[0]

        for group in groups:
            for candidate in group.walk():
                if candidate.name == name:
                    return candidate
        return None

    def list_group_members(self, group_id: str) -> list[KeycloakUser]:
        """列出组成员 (单次请求，不分页)"""
        return KeycloakUser.list_from(self._get(f"/groups/{_segment(group_id)}/members"))

    # ============ Role 操作 ============

    def get_role(self, name: str) -> KeycloakRole | None:
        """按名称获取 realm 角色，不存在返回 None"""
        try:
            return KeycloakRole.from_dict(self._get(f"/roles/{_segment(name)}"))
        except NotFoundError:
            return None

    def list_role_users(self, name: str) -> list[KeycloakUser]:
        """拥有该 realm 角色的用户"""
        return KeycloakUser.list_from(self._get(f"/roles/{_segment(name)}/users"))
