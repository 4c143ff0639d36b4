"""
服务接口定义
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .models import CheckOutcome, Target


class DNSResolverInterface(ABC):
    """DNS解析接口"""

    @abstractmethod
    def resolve_mx(self, domain: str) -> List[Tuple[str, int]]:
        """按优先级返回MX主机，端口固定为25"""
        pass

    @abstractmethod
    def resolve_srv(self, name: str) -> List[Tuple[str, int]]:
        """按优先级返回SRV记录的目标主机和端口"""
        pass


class CacheStoreInterface(ABC):
    """检查结果缓存接口"""

    @abstractmethod
    def load(self) -> Dict[str, float]:
        """加载缓存"""
        pass

    @abstractmethod
    def get_last_checked(self, key: str) -> Optional[float]:
        """获取上次成功检查的时间戳"""
        pass

    @abstractmethod
    def is_fresh(self, key: str, now: float, interval: float) -> bool:
        """判断目标是否在缓存间隔内成功检查过"""
        pass

    @abstractmethod
    def record_success(self, key: str, timestamp: float):
        """记录成功检查"""
        pass

    @abstractmethod
    def save(self):
        """持久化缓存"""
        pass


class LoggerServiceInterface(ABC):
    """日志服务接口"""

    @abstractmethod
    def log_check_start(self, target_count: int):
        """记录检查开始"""
        pass

    @abstractmethod
    def log_target_start(self, target: Target):
        """记录单个目标开始检查"""
        pass

    @abstractmethod
    def log_outcome(self, outcome: CheckOutcome):
        """记录检查结果"""
        pass

    @abstractmethod
    def log_error(self, label: str, error: Exception):
        """记录错误信息"""
        pass

    @abstractmethod
    def log_check_end(self):
        """记录检查结束"""
        pass
