"""
传输层：带连接超时的TCP字节流
"""
import socket
import logging
from typing import Optional

from ..exceptions import TransportError


class Transport:
    """对已连接套接字的缓冲读写封装"""

    # 单行响应的最大长度
    max_line_length = 65536

    def __init__(self, sock: socket.socket, host: str = "", port: int = 0):
        """
        初始化传输层

        Args:
            sock: 已连接的套接字
            host: 对端主机（仅用于错误信息）
            port: 对端端口
        """
        self.sock = sock
        self.host = host
        self.port = port
        self._buffer = b""
        self.logger = logging.getLogger(__name__)

    @classmethod
    def connect(cls, host: str, port: int, connect_timeout: float = 3.0,
                read_timeout: Optional[float] = None) -> "Transport":
        """
        建立TCP连接

        Args:
            host: 主机名或IP地址
            port: 端口
            connect_timeout: 连接超时时间（秒）
            read_timeout: 读写超时时间，None表示一直阻塞

        Returns:
            Transport: 传输层实例

        Raises:
            TransportError: 连接失败或超时
        """
        try:
            sock = socket.create_connection((host, port), timeout=connect_timeout)
        except socket.timeout as e:
            raise TransportError(f"连接 {host}:{port} 超时（{connect_timeout}秒）") from e
        except OSError as e:
            raise TransportError(f"无法连接 {host}:{port}: {e}") from e

        sock.settimeout(read_timeout)
        return cls(sock, host, port)

    def send(self, data: bytes):
        """发送原始字节"""
        try:
            self.sock.sendall(data)
        except OSError as e:
            raise TransportError(f"向 {self._peer} 发送数据失败: {e}") from e

    def send_line(self, line: str):
        """发送一行文本，自动追加CRLF"""
        self.logger.debug(f"{self._peer} >>> {line}")
        self.send(line.encode('utf-8') + b"\r\n")

    def recv(self, max_bytes: int) -> bytes:
        """
        读取最多 max_bytes 字节，优先返回缓冲区中的数据

        Returns:
            bytes: 读取到的数据，对端关闭时为空
        """
        if self._buffer:
            data, self._buffer = self._buffer[:max_bytes], self._buffer[max_bytes:]
            return data
        return self._recv_chunk(max_bytes)

    def read_exact(self, size: int) -> bytes:
        """
        读取恰好 size 字节

        Raises:
            TransportError: 数据不足时连接被关闭
        """
        while len(self._buffer) < size:
            chunk = self._recv_chunk(4096)
            if not chunk:
                raise TransportError(
                    f"{self._peer} 连接已关闭，期望 {size} 字节，仅收到 {len(self._buffer)} 字节"
                )
            self._buffer += chunk

        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def read_line(self) -> str:
        """
        读取一行文本（去掉行尾的CR/LF）

        Raises:
            TransportError: 收到完整一行之前连接被关闭，或行超过 max_line_length
        """
        while b"\n" not in self._buffer:
            if len(self._buffer) > self.max_line_length:
                raise TransportError(f"{self._peer} 响应行超过 {self.max_line_length} 字节")
            chunk = self._recv_chunk(4096)
            if not chunk:
                raise TransportError(f"{self._peer} 连接在收到完整响应前关闭")
            self._buffer += chunk

        line, _, self._buffer = self._buffer.partition(b"\n")
        text = line.rstrip(b"\r").decode('utf-8', errors='replace')
        self.logger.debug(f"{self._peer} <<< {text}")
        return text

    def detach(self) -> socket.socket:
        """交出底层套接字用于TLS握手"""
        if self._buffer:
            self.logger.debug(f"{self._peer} 丢弃 {len(self._buffer)} 字节未读数据")
            self._buffer = b""
        sock, self.sock = self.sock, None
        return sock

    def close(self):
        """关闭连接"""
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def _peer(self) -> str:
        return f"{self.host}:{self.port}"

    def _recv_chunk(self, max_bytes: int) -> bytes:
        try:
            return self.sock.recv(max_bytes)
        except socket.timeout as e:
            raise TransportError(f"读取 {self._peer} 响应超时") from e
        except OSError as e:
            raise TransportError(f"读取 {self._peer} 响应失败: {e}") from e
