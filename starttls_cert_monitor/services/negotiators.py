"""
STARTTLS协商服务

按端口号选择协议，完成TLS握手前所需的最少明文交互。
未登记的端口视为直接TLS，不做任何交互。
"""
import re
import secrets
import socket
import string
import struct
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Tuple, Type
from xml.sax.saxutils import escape

from pyasn1.codec.ber import decoder
from pyasn1.codec.der import encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import namedtype, tag, univ

from ..exceptions import ProtocolError, TransportError
from ..models import Target
from .transport import Transport


def generate_tag(length: int = 6) -> str:
    """生成IMAP事务标签（字母开头的字母数字串）"""
    first = secrets.choice(string.ascii_lowercase)
    rest = ''.join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(length - 1))
    return first + rest


def single_line(line: str, lines: List[str]) -> bool:
    return True


def dot_terminated(line: str, lines: List[str]) -> bool:
    return line == '.'


class ProtocolNegotiator(ABC):
    """协商过程基类"""

    protocol = "TLS"

    def __init__(self, transport: Transport, target: Target):
        self.transport = transport
        self.target = target
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    def negotiate(self):
        """执行协商，失败时抛出 ProtocolError"""
        pass

    def fail(self, message: str) -> ProtocolError:
        return ProtocolError(self.protocol, message)

    def read_response(self, is_complete: Callable[[str, List[str]], bool]) -> List[str]:
        """
        逐行读取响应直到 is_complete 判定结束

        Args:
            is_complete: 以（当前行，已读取的所有行）为参数的判定函数

        Returns:
            List[str]: 响应的所有行
        """
        lines = []
        while True:
            line = self.transport.read_line()
            lines.append(line)
            if is_complete(line, lines):
                return lines

    def command(self, line: str, is_complete: Callable[[str, List[str]], bool]) -> List[str]:
        """发送一条命令并读取响应"""
        self.transport.send_line(line)
        return self.read_response(is_complete)


class ImplicitTLSNegotiator(ProtocolNegotiator):
    """直接TLS，无需协商"""

    def negotiate(self):
        pass


class StatusLineNegotiator(ProtocolNegotiator):
    """
    三位状态码协议（FTP、SMTP）

    多行响应以第4个字符为 '-' 表示续行，为空格表示最后一行。
    """

    # FTP允许多行响应中间出现不带状态码的文本行
    allow_text_lines = False

    def reply_complete(self, line: str, lines: List[str]) -> bool:
        if len(line) == 3 and line.isdigit():
            return True
        if len(line) >= 4 and line[:3].isdigit():
            if line[3] == ' ':
                return True
            if line[3] == '-':
                return False
        if self.allow_text_lines and len(lines) > 1 and not line[:3].isdigit():
            return False
        raise self.fail(f"响应格式错误: {line!r}")

    def expect_success(self, command: str, lines: List[str]):
        if not lines[0].startswith('2'):
            raise self.fail(f"{command} 失败: {' | '.join(lines)}")

    def step(self, command: str):
        self.expect_success(command, self.command(command, self.reply_complete))


class FTPNegotiator(StatusLineNegotiator):
    """FTP: FEAT 后发送 AUTH TLS"""

    protocol = "FTP"
    allow_text_lines = True

    def negotiate(self):
        self.expect_success("服务器问候", self.read_response(self.reply_complete))
        self.step("FEAT")
        self.step("AUTH TLS")


class SMTPNegotiator(StatusLineNegotiator):
    """SMTP: EHLO 后发送 STARTTLS"""

    protocol = "SMTP"

    def negotiate(self):
        self.expect_success("服务器问候", self.read_response(self.reply_complete))
        self.step(f"EHLO {socket.gethostname()}")
        self.step("STARTTLS")


class POP3Negotiator(ProtocolNegotiator):
    """POP3: CAPA 后发送 STLS"""

    protocol = "POP3"

    def negotiate(self):
        self.expect_ok("服务器问候", self.read_response(single_line))
        # 成功时CAPA响应体以单独一行 "." 结束
        self.expect_ok("CAPA", self.command(
            "CAPA", lambda line, lines: not lines[0].startswith('+OK') or line == '.'
        ))
        self.expect_ok("STLS", self.command("STLS", single_line))

    def expect_ok(self, command: str, lines: List[str]):
        if not lines[0].startswith('+OK'):
            raise self.fail(f"{command} 失败: {lines[0]}")


class NNTPNegotiator(ProtocolNegotiator):
    """NNTP: 发送 STARTTLS，期望 382"""

    protocol = "NNTP"

    def negotiate(self):
        greeting = self.transport.read_line()
        if greeting[:1] not in ('1', '2'):
            raise self.fail(f"服务器问候异常: {greeting}")

        first = self.command("STARTTLS", single_line)[0]
        if first.startswith('382'):
            return
        if first[:1] in ('1', '2'):
            self.read_response(dot_terminated)
            return
        raise self.fail(f"STARTTLS 失败: {first}")


class IMAPNegotiator(ProtocolNegotiator):
    """IMAP: 以随机标签发送 STARTTLS，校验标签和状态"""

    protocol = "IMAP"

    def negotiate(self):
        greeting = self.transport.read_line()
        if greeting.split(' ', 1)[0] != '*':
            raise self.fail(f"服务器问候缺少未标记响应: {greeting}")

        tag_name = generate_tag()
        command = f"{tag_name} STARTTLS"
        self.transport.send_line(command)

        while True:
            line = self.transport.read_line()
            tokens = line.split()
            if tokens and tokens[0] == '*':
                continue
            if not tokens or tokens[0] != tag_name:
                raise self.fail(f"命令 {command!r} 收到标签不匹配的响应: {line!r}")
            if len(tokens) < 2 or tokens[1].upper() != 'OK':
                raise self.fail(f"命令 {command!r} 失败，响应: {line!r}")
            return


class IRCNegotiator(ProtocolNegotiator):
    """IRC: CAP LS / STARTTLS，等待 670"""

    protocol = "IRC"
    nickname = "certmonitor"

    def negotiate(self):
        self.transport.send_line("CAP LS")
        self.transport.send_line(f"MODE {self.nickname}")
        self.transport.send_line("STARTTLS")

        seen_cap = False
        capabilities = []
        while True:
            line = self.transport.read_line()
            command, params = self.parse_message(line)
            if not command:
                continue

            if command == '670':
                return
            if command == 'PING':
                self.transport.send_line(f"PONG :{params[-1]}" if params else "PONG")
            elif command == '691':
                raise self.fail(f"服务器拒绝 STARTTLS: {line}")
            elif command == '451' and not seen_cap:
                raise self.fail(f"服务器不支持 CAP/STARTTLS: {line}")
            elif command == 'CAP':
                seen_cap = True
                if len(params) >= 3 and params[1].upper() == 'LS':
                    capabilities.extend(params[-1].split())
                    more = len(params) >= 4 and params[2] == '*'
                    if not more and not self._has_tls(capabilities):
                        raise self.fail(f"服务器能力列表中没有 tls: {line}")
            elif command == 'ERROR':
                raise self.fail(f"服务器关闭连接: {line}")

    @staticmethod
    def parse_message(line: str) -> Tuple[str, List[str]]:
        """
        解析IRC消息

        Args:
            line: 原始行，可带 @tags 和 :prefix

        Returns:
            Tuple[str, List[str]]: （大写命令或数字码，参数列表）
        """
        rest = line.strip()
        if rest.startswith('@'):
            rest = rest.partition(' ')[2].lstrip()
        if rest.startswith(':'):
            rest = rest.partition(' ')[2].lstrip()

        trailing = None
        if rest.startswith(':'):
            rest, trailing = '', rest[1:]
        elif ' :' in rest:
            rest, trailing = rest.split(' :', 1)

        parts = rest.split()
        if trailing is not None:
            parts.append(trailing)
        if not parts:
            return '', []
        return parts[0].upper(), parts[1:]

    @staticmethod
    def _has_tls(capabilities: List[str]) -> bool:
        return any(cap.split('=', 1)[0].lower() == 'tls' for cap in capabilities)


STARTTLS_OID = "1.3.6.1.4.1.1466.20037"


class LDAPOID(univ.OctetString):
    pass


class Control(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType('controlType', LDAPOID()),
        namedtype.DefaultedNamedType('criticality', univ.Boolean(False)),
        namedtype.OptionalNamedType('controlValue', univ.OctetString()),
    )


class Controls(univ.SequenceOf):
    componentType = Control()


class ExtendedRequest(univ.Sequence):
    tagSet = univ.Sequence.tagSet.tagImplicitly(
        tag.Tag(tag.tagClassApplication, tag.tagFormatConstructed, 23)
    )
    componentType = namedtype.NamedTypes(
        namedtype.NamedType('requestName', LDAPOID().subtype(
            implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 0))),
        namedtype.OptionalNamedType('requestValue', univ.OctetString().subtype(
            implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 1))),
    )


class ExtendedResponse(univ.Sequence):
    tagSet = univ.Sequence.tagSet.tagImplicitly(
        tag.Tag(tag.tagClassApplication, tag.tagFormatConstructed, 24)
    )
    componentType = namedtype.NamedTypes(
        namedtype.NamedType('resultCode', univ.Enumerated()),
        namedtype.NamedType('matchedDN', univ.OctetString()),
        namedtype.NamedType('diagnosticMessage', univ.OctetString()),
        namedtype.OptionalNamedType('referral', univ.SequenceOf(
            componentType=univ.OctetString()).subtype(
            implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatConstructed, 3))),
        namedtype.OptionalNamedType('responseName', LDAPOID().subtype(
            implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 10))),
        namedtype.OptionalNamedType('responseValue', univ.OctetString().subtype(
            implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 11))),
    )


class ProtocolOp(univ.Choice):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType('extendedReq', ExtendedRequest()),
        namedtype.NamedType('extendedResp', ExtendedResponse()),
    )


class LDAPMessage(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType('messageID', univ.Integer()),
        namedtype.NamedType('protocolOp', ProtocolOp()),
        namedtype.OptionalNamedType('controls', Controls().subtype(
            implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatConstructed, 0))),
    )


def build_starttls_request(message_id: int = 1) -> bytes:
    """构造DER编码的 StartTLS ExtendedRequest"""
    request = ExtendedRequest()
    request['requestName'] = STARTTLS_OID.encode('ascii')

    message = LDAPMessage()
    message['messageID'] = message_id
    message['protocolOp']['extendedReq'] = request
    return encoder.encode(message)


class LDAPNegotiator(ProtocolNegotiator):
    """LDAP: StartTLS 扩展操作"""

    protocol = "LDAP"
    max_response_size = 128

    def negotiate(self):
        self.transport.send(build_starttls_request())

        data = self.transport.recv(self.max_response_size)
        if not data:
            raise self.fail("服务器在响应 StartTLS 前关闭连接")

        try:
            message, _ = decoder.decode(data, asn1Spec=LDAPMessage())
            operation = message['protocolOp']
            if operation.getName() != 'extendedResp':
                raise self.fail(f"收到意外的操作类型: {operation.getName()}")
            response = operation['extendedResp']
            result_code = int(response['resultCode'])
            diagnostic = response['diagnosticMessage'].asOctets().decode('utf-8', errors='replace')
        except PyAsn1Error as e:
            raise self.fail(f"无法解析 StartTLS 响应: {e}") from e

        if result_code != 0:
            raise self.fail(f"StartTLS 失败，resultCode={result_code}: {diagnostic}")


class LPRNegotiator(ProtocolNegotiator):
    """LPR (MyQ扩展): 单字节命令，期望NUL确认"""

    protocol = "LPR"
    command_byte = b"\x06"

    def negotiate(self):
        parameters = ["STARTTLS", self.target.server_name]
        self.transport.send(self.command_byte + "\t".join(parameters).encode('utf-8') + b"\n")

        ack = self.transport.recv(1)
        if ack != b"\x00":
            raise self.fail(f"STARTTLS 未被确认，收到: {ack!r}")


CLIENT_PROTOCOL_41 = 0x00000200
CLIENT_SSL = 0x00000800
CLIENT_SECURE_CONNECTION = 0x00008000
MYSQL_MAX_PACKET_SIZE = 0x01000000
MYSQL_CHARSET_UTF8 = 33


class MySQLNegotiator(ProtocolNegotiator):
    """MySQL: 读取握手包后发送 SSLRequest"""

    protocol = "MySQL"

    def negotiate(self):
        # 握手包内容不做校验，直接请求TLS
        header = self.transport.read_exact(4)
        length = int.from_bytes(header[:3], 'little')
        self.transport.read_exact(length)

        flags = CLIENT_PROTOCOL_41 | CLIENT_SECURE_CONNECTION | CLIENT_SSL
        payload = struct.pack('<IIB23x', flags, MYSQL_MAX_PACKET_SIZE, MYSQL_CHARSET_UTF8)
        self.transport.send(len(payload).to_bytes(3, 'little') + b"\x01" + payload)


class XMPPNegotiator(ProtocolNegotiator):
    """XMPP: 打开流并请求 <starttls/>，等待 <proceed/>"""

    protocol = "XMPP"
    max_response_size = 65536
    proceed_pattern = re.compile(rb"<(?:[\w.-]+:)?proceed[\s/>]")
    failure_pattern = re.compile(rb"<(?:[\w.-]+:)?failure[\s/>]")

    def negotiate(self):
        domain = escape(self.target.server_name, {"'": "&apos;"})
        self.transport.send((
            "<?xml version='1.0'?>"
            f"<stream:stream to='{domain}' xmlns='jabber:client' "
            "xmlns:stream='http://etherx.jabber.org/streams' version='1.0'>"
            "<starttls xmlns='urn:ietf:params:xml:ns:xmpp-tls'/>"
        ).encode('utf-8'))

        response = b""
        while True:
            chunk = self.transport.recv(4096)
            if not chunk:
                raise self.fail(f"服务器在 proceed 之前关闭连接: {response[-200:]!r}")
            response += chunk

            if self.proceed_pattern.search(response):
                return
            if self.failure_pattern.search(response) or b"</stream:stream>" in response:
                raise self.fail(f"服务器拒绝 STARTTLS: {response[-200:]!r}")
            if len(response) > self.max_response_size:
                raise self.fail("响应过长，未找到 proceed")


NEGOTIATORS: Dict[int, Type[ProtocolNegotiator]] = {
    21: FTPNegotiator,
    25: SMTPNegotiator,
    110: POP3Negotiator,
    119: NNTPNegotiator,
    143: IMAPNegotiator,
    194: IRCNegotiator,
    389: LDAPNegotiator,
    515: LPRNegotiator,
    587: SMTPNegotiator,
    3306: MySQLNegotiator,
    5222: XMPPNegotiator,
    6667: IRCNegotiator,
}


class ProtocolNegotiatorService:
    """按端口分派协商过程"""

    def __init__(self, negotiators: Dict[int, Type[ProtocolNegotiator]] = None):
        self.negotiators = dict(NEGOTIATORS if negotiators is None else negotiators)
        self.logger = logging.getLogger(__name__)

    def get_negotiator_class(self, port: int) -> Type[ProtocolNegotiator]:
        """未登记的端口按隐式TLS处理"""
        return self.negotiators.get(port, ImplicitTLSNegotiator)

    def negotiate(self, transport: Transport, target: Target) -> str:
        """
        完成端口对应协议的STARTTLS协商

        Args:
            transport: 已连接的传输层
            target: 检查目标

        Returns:
            str: 使用的协议名称

        Raises:
            ProtocolError: 响应异常或读写失败
        """
        negotiator_class = self.get_negotiator_class(target.port)
        negotiator = negotiator_class(transport, target)

        if negotiator_class is not ImplicitTLSNegotiator:
            self.logger.debug(f"{target} 使用 {negotiator.protocol} STARTTLS 协商")

        try:
            negotiator.negotiate()
        except TransportError as e:
            raise ProtocolError(negotiator.protocol, f"I/O错误: {e}") from e

        return negotiator.protocol
