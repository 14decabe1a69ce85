"""
目标账号解析

三种选择方式，都返回去重后的 TargetSet：
- 按组: 组名搜索 → 组成员 (单次请求)
- 整个 realm: 所有用户 (单次请求)
- 按角色: 分页遍历所有用户并检查角色交集，或逐个角色查询成员
"""

import logging

import httpx

from .client import KeycloakAdminClient, KeycloakClientError, NotFoundError
from .config import PAGE_SIZE
from .models import KeycloakUser, KeycloakValidationError, TargetSet

logger = logging.getLogger(__name__)


def parse_role_names(value: str) -> list[str]:
    """逗号分隔的角色名 → 去重后的列表 (保留顺序，区分大小写)"""
    names: list[str] = []
    for part in value.split(","):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return names


def resolve_group(client: KeycloakAdminClient, group_name: str, exact: bool = False) -> TargetSet:
    """
    组成员

    Raises:
        NotFoundError: 没有匹配的组
    """
    group = client.find_group_by_name(group_name, exact=exact)
    if group is None:
        raise NotFoundError(f"realm '{client.realm}' 中没有找到组 '{group_name}'")

    logger.info("找到组 '%s' (id: %s)", group.path or group.name, group.id)
    members = client.list_group_members(group.id)
    logger.info("组 '%s' 共 %d 个成员", group.name, len(members))
    return TargetSet.from_users(members)


def resolve_realm(client: KeycloakAdminClient) -> TargetSet:
    """realm 内所有用户"""
    users = client.list_users()
    logger.info("realm '%s' 共 %d 个用户", client.realm, len(users))
    return TargetSet.from_users(users)


def resolve_roles_paged(
    client: KeycloakAdminClient,
    role_names: list[str],
    page_size: int = PAGE_SIZE,
) -> TargetSet:
    """
    分页遍历 realm 用户，选出拥有任一目标角色的用户

    先查询用户总数，再按 page_size 分页。每个用户单独查询 realm 角色映射，
    与 role_names 有交集 (精确匹配) 才加入目标集合。
    实际遍历数与总数不一致时只记录警告。
    """
    targets = set(role_names)
    warnings: list[str] = []
    matched: list[KeycloakUser] = []

    total = client.count_users()
    logger.info("realm '%s' 共 %d 个用户，每页 %d 个", client.realm, total, page_size)

    # 偏移分页在用户增删时可能重复返回同一用户，按 id 去重后再和总数比较
    seen: set[str] = set()
    for page in client.iter_user_pages(total, page_size):
        for user in page:
            if user.id in seen:
                logger.debug("用户 %s 在分页中重复出现，跳过", user.display_name)
                continue
            seen.add(user.id)
            try:
                roles = {r.name for r in client.get_user_realm_roles(user.id)}
            except (KeycloakClientError, KeycloakValidationError, httpx.HTTPError) as e:
                msg = f"无法获取用户 {user.display_name} 的角色，跳过: {e}"
                logger.warning(msg)
                warnings.append(msg)
                continue

            hits = sorted(roles & targets)
            if hits:
                logger.info("用户 %s 拥有目标角色 %s", user.display_name, ", ".join(hits))
                matched.append(user)
            else:
                logger.debug("用户 %s 没有目标角色", user.display_name)

    if len(seen) != total:
        msg = f"遍历了 {len(seen)} 个用户，但 /users/count 返回 {total} (运行期间用户数可能发生变化)"
        logger.warning(msg)
        warnings.append(msg)

    result = TargetSet.from_users(matched, warnings)
    logger.info("拥有目标角色的用户: %d 个", len(result))
    return result


def resolve_roles_direct(client: KeycloakAdminClient, role_names: list[str]) -> TargetSet:
    """
    逐个角色查询成员并合并

    不存在的角色只记录警告并跳过；同时拥有多个目标角色的用户只保留一次
    """
    warnings: list[str] = []
    users: list[KeycloakUser] = []

    for name in role_names:
        try:
            role = client.get_role(name)
        except (KeycloakClientError, KeycloakValidationError, httpx.HTTPError) as e:
            msg = f"无法查询角色 '{name}'，跳过: {e}"
            logger.warning(msg)
            warnings.append(msg)
            continue

        if role is None:
            msg = f"realm '{client.realm}' 中没有角色 '{name}'，跳过"
            logger.warning(msg)
            warnings.append(msg)
            continue

        try:
            members = client.list_role_users(name)
        except (KeycloakClientError, KeycloakValidationError, httpx.HTTPError) as e:
            msg = f"无法获取角色 '{name}' 的用户，跳过: {e}"
            logger.warning(msg)
            warnings.append(msg)
            continue

        logger.info("角色 '%s' 共 %d 个用户", name, len(members))
        users.extend(members)

    result = TargetSet.from_users(users, warnings)
    if len(users) > len(result):
        logger.info("合并了 %d 条重复的用户记录 (用户拥有多个目标角色)", len(users) - len(result))
    return result
