"""运行时特性检测：检查可选依赖以确定可用的存储后端。

Runtime feature detection for optional extras.
"""
from __future__ import annotations

from importlib.util import find_spec

# pip extra -> module it provides
EXTRAS: dict[str, str] = {
    "redis": "redis.asyncio",
}


def _is_available(module_name: str) -> bool:
    try:
        return find_spec(module_name) is not None
    except (ImportError, ValueError):
        # find_spec imports parent packages; a missing parent raises
        return False


HAS_REDIS: bool = _is_available(EXTRAS["redis"])


def require_extra(extra_name: str, module_name: str | None = None) -> None:
    """Raise ImportError with an install hint if an extra is not available.

    Args:
        extra_name: Name of the pip extra (e.g. 'redis')
        module_name: Module to check; defaults to the one registered for the extra

    Raises:
        ImportError: When the module cannot be imported.
    """
    if _is_available(module_name or EXTRAS.get(extra_name, extra_name)):
        return
    raise ImportError(
        f"The '{extra_name}' extra is required for this feature. "
        f"Install it with: pip install ai-resilience-python[{extra_name}]"
    )
