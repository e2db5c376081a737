"""Join token encoding and kubeconfig rewriting.

A k0s join token is a kubeconfig document, gzip compressed and base64
encoded. The helpers here unpack it, point its ``k0s`` cluster entry at the
externally reachable API port, pack it again, and pull out the public token
identifier used to invalidate it later.
"""

import base64
import binascii
import gzip
import logging
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Union
from urllib.parse import urlsplit, urlunsplit

import yaml

from ..models import Cluster, TokenRole

logger = logging.getLogger("joinkeeper.tokens")

K0S_CLUSTER_NAME = "k0s"

BOOTSTRAP_USERS: Dict[TokenRole, str] = {
    TokenRole.CONTROLLER: "controller-bootstrap",
    TokenRole.WORKER: "kubelet-bootstrap",
}


class TokenCodecError(ValueError):
    """Base class for token codec failures."""
    pass


class DecodeError(TokenCodecError):
    """The token is not valid base64 or not a valid gzip stream."""
    pass


class ParseError(TokenCodecError):
    """The embedded document is not a usable kubeconfig."""
    pass


class ConfigurationError(TokenCodecError):
    """The request asks for something the codec cannot produce."""
    pass


@dataclass
class ClientConfig:
    """A kubeconfig document with its named lists indexed by name."""
    clusters: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    users: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    contexts: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    current_context: str = ''
    preferences: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, data: Union[bytes, str]) -> 'ClientConfig':
        """Parse a kubeconfig document.

        Raises:
            ParseError: If the document is not YAML or not kubeconfig shaped
        """
        try:
            raw = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise ParseError(f"invalid kubeconfig: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ParseError("invalid kubeconfig: document is not a mapping")

        return cls(
            clusters=_index_named(raw.get('clusters'), 'cluster'),
            users=_index_named(raw.get('users'), 'user'),
            contexts=_index_named(raw.get('contexts'), 'context'),
            current_context=raw.get('current-context') or '',
            preferences=raw.get('preferences') or {},
        )

    def to_yaml(self) -> bytes:
        """Serialize back to a kubeconfig document."""
        document = {
            'apiVersion': 'v1',
            'clusters': _named_list(self.clusters, 'cluster'),
            'contexts': _named_list(self.contexts, 'context'),
            'current-context': self.current_context,
            'kind': 'Config',
            'preferences': self.preferences,
            'users': _named_list(self.users, 'user'),
        }
        return yaml.safe_dump(document, default_flow_style=False, sort_keys=False).encode('utf-8')


def _index_named(entries: Any, payload_key: str) -> Dict[str, Dict[str, Any]]:
    if entries is None:
        return {}
    if not isinstance(entries, list):
        raise ParseError(f"invalid kubeconfig: {payload_key}s is not a list")

    indexed: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get('name'):
            raise ParseError(f"invalid kubeconfig: unnamed {payload_key} entry")
        indexed[entry['name']] = dict(entry.get(payload_key) or {})
    return indexed


def _named_list(entries: Dict[str, Dict[str, Any]], payload_key: str) -> List[Dict[str, Any]]:
    return [{'name': name, payload_key: payload} for name, payload in entries.items()]


def decode(token: str) -> bytes:
    """Decode a join token into the kubeconfig bytes it carries.

    Raises:
        DecodeError: If the token is not base64 or the payload is not gzip
    """
    try:
        compressed = base64.b64decode(token.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"token is not valid base64: {e}") from e

    try:
        return gzip.decompress(compressed)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(f"token payload is not a valid gzip stream: {e}") from e


def encode(data: bytes) -> str:
    """Encode kubeconfig bytes as a join token.

    The gzip header timestamp is pinned so the same input always yields the
    same token.
    """
    compressed = gzip.compress(data, compresslevel=9, mtime=0)
    return base64.b64encode(compressed).decode('ascii')


def _replace_url_port(server: str, port: int) -> str:
    parts = urlsplit(server)
    if not parts.scheme or not parts.netloc:
        raise ParseError(f"invalid server URL: {server!r}")

    userinfo, at, hostport = parts.netloc.rpartition('@')
    if hostport.startswith('['):
        end = hostport.find(']')
        if end == -1:
            raise ParseError(f"invalid server URL: {server!r}")
        host = hostport[:end + 1]
    else:
        host = hostport.split(':', 1)[0]

    if not host:
        raise ParseError(f"server URL has no host: {server!r}")

    return urlunsplit(parts._replace(netloc=f"{userinfo}{at}{host}:{port}"))


def rewrite_port(document: Union[bytes, str], port: int) -> Tuple[bytes, ClientConfig]:
    """Point the ``k0s`` cluster entry of a kubeconfig at another port.

    Args:
        document: Kubeconfig document
        port: New API server port

    Returns:
        tuple: (serialized document, parsed ClientConfig)

    Raises:
        ConfigurationError: If the port is out of range
        ParseError: If the document has no usable ``k0s`` cluster entry
    """
    if not 0 <= int(port) <= 65535:
        raise ConfigurationError(f"port out of range: {port}")

    config = ClientConfig.from_yaml(document)
    cluster = config.clusters.get(K0S_CLUSTER_NAME)
    if cluster is None:
        raise ParseError(f"kubeconfig has no cluster named {K0S_CLUSTER_NAME!r}")
    if not cluster.get('server'):
        raise ParseError(f"cluster {K0S_CLUSTER_NAME!r} has no server URL")

    cluster['server'] = _replace_url_port(cluster['server'], int(port))
    return config.to_yaml(), config


def bootstrap_user(role: Union[TokenRole, str]) -> str:
    """Map a token role to the kubeconfig user holding its bootstrap token.

    Raises:
        ConfigurationError: For roles without a bootstrap user
    """
    user = BOOTSTRAP_USERS.get(TokenRole(role))
    if user is None:
        raise ConfigurationError(f"unknown role: {role}")
    return user


def extract_token_id(config: ClientConfig, role: Union[TokenRole, str]) -> str:
    """Return the public identifier of the bootstrap token in ``config``.

    Bootstrap tokens have the form ``<id>.<secret>``; only the id is returned.
    """
    user_name = bootstrap_user(role)
    user = config.users.get(user_name)
    if user is None:
        raise ParseError(f"kubeconfig has no user named {user_name!r}")

    token = user.get('token') or ''
    token_id = token.split('.', 1)[0]
    if not token_id:
        raise ParseError(f"user {user_name!r} has no bootstrap token")
    return token_id


def replace_token_port(token: str, cluster: Cluster) -> Tuple[str, ClientConfig]:
    """Rewrite the API port embedded in a join token to the cluster's external port.

    Returns:
        tuple: (new token, parsed ClientConfig of the new token)
    """
    document = decode(token)
    updated, config = rewrite_port(document, cluster.api_port)
    logger.debug("Rewrote join token server for %s/%s to port %d",
                 cluster.namespace, cluster.name, cluster.api_port)
    return encode(updated), config
