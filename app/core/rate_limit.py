"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

HTTP 接口限流配置。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流，计数保存在进程内存中（与单进程部署模型一致）
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)
