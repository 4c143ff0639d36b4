"""
错误处理服务
"""
import socket
import ssl
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..exceptions import CertMonitorError, ProtocolError, TLSError, TransportError


class CheckErrorHandler:
    """检查错误分类器"""

    def __init__(self):
        """初始化错误处理器"""
        self.logger = logging.getLogger(__name__)

    def classify(self, error: Exception) -> str:
        """
        确定错误类型

        Args:
            error: 异常对象

        Returns:
            str: TransportError、ProtocolError、TLSError 或原始异常类名
        """
        if isinstance(error, CertMonitorError):
            return type(error).__name__
        if isinstance(error, ssl.SSLError):
            return TLSError.__name__
        if isinstance(error, OSError):
            return TransportError.__name__
        return type(error).__name__

    def handle_check_error(self, label: str, error: Exception) -> Dict[str, Any]:
        """
        处理单个目标的检查错误

        Args:
            label: 目标描述
            error: 异常对象

        Returns:
            Dict[str, Any]: 错误处理结果
        """
        error_info = {
            'target': label,
            'error_type': self.classify(error),
            'error_message': str(error) or type(error).__name__,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'suggested_action': self._get_suggested_action(error)
        }

        self.logger.debug(
            f"目标 {label} 检查失败 ({error_info['error_type']}): {error_info['error_message']}, "
            f"建议: {error_info['suggested_action']}"
        )

        return error_info

    def _get_suggested_action(self, error: Exception) -> str:
        """
        获取错误的建议处理方案

        Args:
            error: 异常对象

        Returns:
            str: 建议的处理方案
        """
        error_message = str(error).lower()
        cause = error.__cause__

        if isinstance(error, ProtocolError):
            return f"检查服务器的 {error.protocol} STARTTLS 支持和端口配置"
        if isinstance(error, TLSError):
            if 'handshake' in error_message or isinstance(cause, ssl.SSLError):
                return "TLS握手失败，检查服务器TLS版本和加密套件配置"
            return "检查服务器证书配置"
        if isinstance(error, TransportError):
            if isinstance(cause, socket.timeout) or '超时' in error_message:
                return "检查网络连接，考虑增加超时时间"
            if isinstance(cause, socket.gaierror):
                return "检查主机名是否正确，DNS服务器是否可用"
            if isinstance(cause, ConnectionRefusedError):
                return "检查目标服务器是否运行，端口是否正确"
            return "检查网络连接和服务器状态"
        return "检查网络连接和服务器状态"

    def get_error_statistics(self, error_list: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        获取错误统计信息

        Args:
            error_list: 错误信息列表

        Returns:
            Dict[str, Any]: 错误统计
        """
        if not error_list:
            return {
                'total_errors': 0,
                'error_types': {},
                'most_common_error': None
            }

        error_types = {}
        for error_info in error_list:
            error_type = error_info.get('error_type', 'Unknown')
            error_types[error_type] = error_types.get(error_type, 0) + 1

        most_common_error = max(error_types.items(), key=lambda x: x[1])

        return {
            'total_errors': len(error_list),
            'error_types': error_types,
            'most_common_error': most_common_error[0],
            'most_common_error_count': most_common_error[1]
        }
