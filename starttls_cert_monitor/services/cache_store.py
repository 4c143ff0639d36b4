"""
检查结果缓存服务
"""
import os
import json
import logging
import tempfile
from typing import Dict, Optional

from ..exceptions import ConfigError
from ..interfaces import CacheStoreInterface


class JSONCacheStore(CacheStoreInterface):
    """以JSON文件保存 目标键 -> 上次成功检查时间戳"""

    def __init__(self, path: str):
        """
        初始化缓存

        Args:
            path: 缓存文件路径
        """
        self.path = os.path.expanduser(path)
        self.entries: Dict[str, float] = {}
        self.logger = logging.getLogger(__name__)

    def load(self) -> Dict[str, float]:
        """
        加载缓存，文件不存在时视为空缓存

        Returns:
            Dict[str, float]: 缓存内容

        Raises:
            ConfigError: 文件存在但无法读取
        """
        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            self.entries = {}
            return self.entries
        except ValueError as e:
            self.logger.warning(f"缓存文件 {self.path} 格式错误，忽略: {e}")
            self.entries = {}
            return self.entries
        except OSError as e:
            raise ConfigError(f"无法读取缓存文件 {self.path}: {e}") from e

        if not isinstance(data, dict):
            self.logger.warning(f"缓存文件 {self.path} 内容不是对象，忽略")
            data = {}

        self.entries = {
            key: float(value) for key, value in data.items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }
        self.logger.debug(f"从 {self.path} 加载 {len(self.entries)} 条缓存记录")
        return self.entries

    def get_last_checked(self, key: str) -> Optional[float]:
        return self.entries.get(key)

    def is_fresh(self, key: str, now: float, interval: float) -> bool:
        """
        判断目标是否在缓存间隔内检查过

        Args:
            key: 目标键
            now: 当前时间戳
            interval: 缓存间隔（秒）

        Returns:
            bool: now - 上次检查 < interval 时为True
        """
        last_checked = self.get_last_checked(key)
        if last_checked is None:
            return False
        return now - last_checked < interval

    def record_success(self, key: str, timestamp: float):
        self.entries[key] = timestamp

    def save(self):
        """整体覆盖写入缓存文件"""
        directory = os.path.dirname(self.path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".cache-", suffix=".json")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self.entries, f, indent=2, sort_keys=True)
                os.replace(tmp_path, self.path)
            except Exception:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise ConfigError(f"无法写入缓存文件 {self.path}: {e}") from e

        self.logger.debug(f"已保存 {len(self.entries)} 条缓存记录到 {self.path}")
