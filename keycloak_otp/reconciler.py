"""
逐个账号添加 required action

每个账号: 读取一次 → 合并 → 有变化才 PUT 一次。单个账号失败只记录，不中断整批。
"""

import logging

import httpx

from .client import KeycloakAdminClient, KeycloakClientError, NotFoundError
from .config import CONFIGURE_TOTP
from .merge import merge_required_actions
from .models import KeycloakValidationError, Outcome, RunSummary, TargetAccount, TargetSet

logger = logging.getLogger(__name__)


def reconcile_account(
    client: KeycloakAdminClient,
    account: TargetAccount,
    action: str,
    summary: RunSummary,
) -> Outcome:
    """处理单个账号，结果写入 summary"""
    name = account.display_name
    prefix = "[预览] " if summary.dry_run else ""

    try:
        user = client.get_user(account.id)
    except NotFoundError as e:
        logger.warning("用户 %s 不存在 (可能已被删除): %s", name, e)
        return summary.record(account, Outcome.NOT_FOUND, str(e)).outcome
    except (KeycloakClientError, KeycloakValidationError, httpx.HTTPError) as e:
        logger.error("获取用户 %s 失败: %s", name, e)
        return summary.record(account, Outcome.FETCH_FAILED, str(e)).outcome

    actions, changed = merge_required_actions(user.requiredActions, action)
    if not changed:
        logger.info("用户 %s 已有 %s，跳过", name, action)
        return summary.record(account, Outcome.ALREADY_PRESENT).outcome

    if summary.dry_run:
        logger.info("%s用户 %s: requiredActions %s → %s", prefix, name, user.requiredActions or [], actions)
        return summary.record(account, Outcome.APPLIED).outcome

    try:
        body = client.update_required_actions(account.id, actions)
    except (KeycloakClientError, httpx.HTTPError) as e:
        logger.error("更新用户 %s 失败: %s", name, e)
        return summary.record(account, Outcome.UPDATE_FAILED, str(e)).outcome

    # PUT 成功时响应体为空，有内容说明服务端拒绝了更新
    if body:
        logger.error("更新用户 %s 失败: %s", name, body)
        return summary.record(account, Outcome.UPDATE_FAILED, body).outcome

    logger.info("用户 %s 已添加 %s", name, action)
    return summary.record(account, Outcome.APPLIED).outcome


def reconcile(
    client: KeycloakAdminClient,
    targets: TargetSet,
    action: str = CONFIGURE_TOTP,
    *,
    dry_run: bool = False,
) -> RunSummary:
    """
    为目标集合中的每个账号确保存在 action

    按顺序逐个处理，不并发、不重试。

    Args:
        client: 已认证的客户端
        targets: 解析好的目标账号集合
        action: 需要存在的 required action
        dry_run: 只计算结果，不发送 PUT

    Returns:
        RunSummary 运行结果
    """
    if not action:
        raise KeycloakValidationError("action 不能为空")

    summary = RunSummary(action=action, dry_run=dry_run, warnings=list(targets.warnings))

    for i, account in enumerate(targets, start=1):
        logger.info("[%d/%d] 处理用户 %s (id: %s)", i, len(targets), account.display_name, account.id)
        reconcile_account(client, account, action, summary)

    logger.info(
        "完成: 目标 %d，添加 %d，已存在 %d，失败 %d",
        summary.total, summary.applied, summary.already_present, summary.failed,
    )
    return summary
