"""
DNS解析服务
"""
import logging
from typing import List, Optional, Tuple

import dns.exception
import dns.name
import dns.resolver

from ..exceptions import TransportError
from ..interfaces import DNSResolverInterface
from .target_resolver import MX_PORT


class DNSResolver(DNSResolverInterface):
    """基于dnspython的MX/SRV解析"""

    def __init__(self, timeout: float = 5.0, resolver: Optional[dns.resolver.Resolver] = None):
        """
        初始化DNS解析服务

        Args:
            timeout: 单次查询总超时时间（秒）
            resolver: 自定义解析器，默认使用系统配置
        """
        self.resolver = resolver or dns.resolver.Resolver()
        self.resolver.lifetime = timeout
        self.logger = logging.getLogger(__name__)

    def resolve_mx(self, domain: str) -> List[Tuple[str, int]]:
        answers = self._query(domain, 'MX')
        # 空MX（RFC 7505）表示该域不接收邮件
        records = sorted((r for r in answers if r.exchange != dns.name.root), key=lambda r: r.preference)
        return [(r.exchange.to_text(omit_final_dot=True), MX_PORT) for r in records]

    def resolve_srv(self, name: str) -> List[Tuple[str, int]]:
        answers = self._query(name, 'SRV')
        # 目标为 "." 表示服务不可用
        records = sorted((r for r in answers if r.target != dns.name.root), key=lambda r: (r.priority, -r.weight))
        return [(r.target.to_text(omit_final_dot=True), r.port) for r in records]

    def _query(self, name: str, record_type: str):
        try:
            return self.resolver.resolve(name, record_type)
        except dns.resolver.NXDOMAIN as e:
            raise TransportError(f"域名 {name} 不存在") from e
        except dns.resolver.NoAnswer as e:
            raise TransportError(f"{name} 没有 {record_type} 记录") from e
        except dns.exception.DNSException as e:
            raise TransportError(f"查询 {name} 的 {record_type} 记录失败: {e}") from e
