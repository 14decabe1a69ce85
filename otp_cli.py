#!/usr/bin/env python3
"""
Keycloak OTP CLI

为用户添加 CONFIGURE_TOTP required action:
    otp_cli.py group <keycloak-url> <realm> <admin-username> <admin-password> <group-name>
    otp_cli.py realm <keycloak-url> <realm> <admin-username> <admin-password>
    otp_cli.py roles <keycloak-url> <realm> <admin-username> <admin-password> <role1,role2>
"""
import argparse
import logging
import os
import sys

import httpx

from keycloak_otp import (
    AuthenticationError,
    KeycloakAdminClient,
    KeycloakClientError,
    KeycloakValidationError,
    NotFoundError,
    Outcome,
    RunSummary,
    TargetSet,
    authenticate,
    parse_role_names,
    reconcile,
    resolve_group,
    resolve_realm,
    resolve_roles_direct,
    resolve_roles_paged,
)
from keycloak_otp.config import (
    CONFIGURE_TOTP,
    DEFAULT_TIMEOUT,
    PAGE_SIZE,
    PASSWORD_ENV_VAR,
    configure_logging,
)


class ArgumentParser(argparse.ArgumentParser):
    """参数错误时以退出码 1 结束"""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: 错误: {message}\n")


class FatalError(Exception):
    """终止整个运行的错误"""
    def __init__(self, message: str, body: str | None = None):
        super().__init__(message)
        self.body = body


def resolve_password(value: str) -> str:
    """密码为 "-" 时从环境变量读取，避免出现在进程列表中"""
    if value != "-":
        return value
    password = os.environ.get(PASSWORD_ENV_VAR, "")
    if not password:
        raise FatalError(f"密码参数为 '-'，但环境变量 {PASSWORD_ENV_VAR} 未设置")
    return password


# ========== 目标解析 ==========

def targets_group(args, client: KeycloakAdminClient) -> TargetSet:
    print(f"搜索组: {args.group_name}")
    try:
        targets = resolve_group(client, args.group_name, exact=args.exact)
    except NotFoundError as e:
        raise FatalError(str(e)) from e
    if not targets:
        raise FatalError(f"组 '{args.group_name}' 中没有用户")
    return targets


def targets_realm(args, client: KeycloakAdminClient) -> TargetSet:
    print(f"获取 realm '{args.realm}' 的所有用户...")
    targets = resolve_realm(client)
    if not targets:
        raise FatalError(f"realm '{args.realm}' 中没有用户")
    return targets


def targets_roles(args, client: KeycloakAdminClient) -> TargetSet:
    role_names = parse_role_names(args.roles)
    if not role_names:
        raise FatalError("至少需要一个角色名")
    print(f"目标角色: {', '.join(role_names)} (方式: {args.strategy})")
    if args.strategy == "direct":
        return resolve_roles_direct(client, role_names)
    return resolve_roles_paged(client, role_names, page_size=args.page_size)


# ========== 输出 ==========

def print_summary(summary: RunSummary, scope: str) -> None:
    title = "汇总 [预览]" if summary.dry_run else "汇总"
    print(f"\n{title}:")
    print(f"  目标用户 ({scope}): {summary.total}")
    verb = "将添加" if summary.dry_run else "已添加"
    print(f"  ✓ {verb} {summary.action}: {summary.applied}")
    print(f"  - 已存在，跳过: {summary.already_present}")
    print(f"  ✗ 失败: {summary.failed}")
    counts = summary.counts()
    for outcome in Outcome:
        if outcome.is_failure:
            print(f"      {outcome.value}: {counts[outcome.value]}")

    if summary.warnings:
        print(f"\n  警告: {len(summary.warnings)} 个")
        for warning in summary.warnings:
            print(f"    ! {warning}")

    if summary.failures:
        print(f"\n  失败详情:")
        for failure in summary.failures:
            print(f"    ✗ {failure}")

    print(f"\n相关用户下次登录时将被要求配置 OTP。")


def scope_label(args) -> str:
    if args.command == "group":
        return f"组 '{args.group_name}'"
    if args.command == "roles":
        return f"角色 [{args.roles}]"
    return f"realm '{args.realm}'"


# ========== 执行 ==========

def run(args, transport: httpx.BaseTransport | None = None) -> int:
    password = resolve_password(args.admin_password)

    print(f"获取管理员令牌...")
    token = authenticate(
        args.base_url, args.admin_username, password,
        timeout=args.timeout, transport=transport,
    )
    print(f"✓ 令牌获取成功")

    with KeycloakAdminClient(
        args.base_url, args.realm, token,
        timeout=args.timeout, transport=transport,
    ) as client:
        try:
            targets = args.targets(args, client)
        except (KeycloakClientError, KeycloakValidationError, httpx.HTTPError) as e:
            raise FatalError(f"解析目标用户失败: {e}", getattr(e, "body", None)) from e

        print(f"共 {len(targets)} 个目标用户\n")
        summary = reconcile(client, targets, args.action, dry_run=args.dry_run)

    print_summary(summary, scope_label(args))
    return 0


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog='keycloak-otp', description='为 Keycloak 用户添加 OTP required action')
    subparsers = parser.add_subparsers(dest='command', help='选择用户的方式', parser_class=ArgumentParser)

    def add_common(p):
        p.add_argument('base_url', help='Keycloak 地址，如 https://keycloak.example.com')
        p.add_argument('realm', help='目标 realm')
        p.add_argument('admin_username', help='master realm 管理员用户名')
        p.add_argument('admin_password', help=f"管理员密码，'-' 表示读取环境变量 {PASSWORD_ENV_VAR}")

    def add_options(p):
        p.add_argument('--action', default=CONFIGURE_TOTP, help=f'required action，默认 {CONFIGURE_TOTP}')
        p.add_argument('--dry-run', action='store_true', help='预览模式，不修改用户')
        p.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT, help=f'请求超时秒数，默认 {DEFAULT_TIMEOUT}')
        p.add_argument('-v', '--verbose', action='store_true', help='输出调试日志')

    p = subparsers.add_parser('group', help='组内所有用户')
    add_common(p)
    p.add_argument('group_name', help='组名 (模糊搜索，取第一个结果)')
    p.add_argument('--exact', action='store_true', help='要求组名完全一致')
    add_options(p)
    p.set_defaults(targets=targets_group)

    p = subparsers.add_parser('realm', help='realm 内所有用户')
    add_common(p)
    add_options(p)
    p.set_defaults(targets=targets_realm)

    p = subparsers.add_parser('roles', help='拥有指定 realm 角色的用户')
    add_common(p)
    p.add_argument('roles', help="逗号分隔的角色名，如 'admin,superuser'")
    p.add_argument('--strategy', choices=['paged', 'direct'], default='paged',
                   help='paged: 分页遍历用户并检查角色; direct: 逐个角色查询成员')
    p.add_argument('--page-size', type=int, default=PAGE_SIZE, help=f'分页大小，默认 {PAGE_SIZE}')
    add_options(p)
    p.set_defaults(targets=targets_roles)

    return parser


def main(argv: list[str] | None = None, transport: httpx.BaseTransport | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if getattr(args, 'page_size', PAGE_SIZE) <= 0:
        parser.error('--page-size 必须大于 0')

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        return run(args, transport)
    except AuthenticationError as e:
        print(f"✗ 获取管理员令牌失败，请检查凭据和 Keycloak 地址: {e}")
        if e.body:
            print(f"响应: {e.body}")
        return 1
    except (FatalError, KeycloakValidationError) as e:
        print(f"✗ {e}")
        if getattr(e, "body", None):
            print(f"响应: {e.body}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
