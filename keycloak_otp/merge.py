"""
requiredActions 合并

纯函数，不做任何 I/O。PUT /users/{id} 对 requiredActions 是整体替换，
所以合并结果必须包含原有的全部 action，且顺序不变。
"""

from collections.abc import Sequence


def merge_required_actions(current: Sequence[str] | None, desired: str) -> tuple[list[str], bool]:
    """
    把 desired 合并进现有的 requiredActions

    Args:
        current: 用户当前的 requiredActions，None 视为空列表
        desired: 需要存在的 action (精确匹配，区分大小写)

    Returns:
        (新的 action 列表, 是否有变化)。已存在时原样返回，changed=False；
        否则追加到末尾。返回的总是新列表，不会修改入参
    """
    if not desired:
        raise ValueError("desired action 不能为空")

    actions = list(current or [])
    if desired in actions:
        return actions, False

    actions.append(desired)
    return actions, True
