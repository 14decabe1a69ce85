"""
运行配置常量

Keycloak 管理 API 的固定参数集中在这里，避免散落在代码里的魔法值。
默认值与原有脚本行为保持一致，CLI 可以覆盖其中一部分。
"""

import logging

# 管理员令牌总是在 master realm 上用 admin-cli 换取 (password grant)
TOKEN_REALM = "master"
ADMIN_CLIENT_ID = "admin-cli"

# 角色分页模式每页用户数
PAGE_SIZE = 100

# 与 httpx 默认超时一致，本工具不做重试
DEFAULT_TIMEOUT = 5.0

# Keycloak 内置的 OTP 注册 required action
CONFIGURE_TOTP = "CONFIGURE_TOTP"

# 管理员密码参数为 "-" 时从此环境变量读取
PASSWORD_ENV_VAR = "KEYCLOAK_ADMIN_PASSWORD"


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """初始化根 logger，格式适合命令行输出"""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    # httpx 每个请求都会打 INFO 日志，调试时才需要
    logging.getLogger("httpx").setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
