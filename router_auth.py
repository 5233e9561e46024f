#!/usr/bin/env python3
"""
Login handshake for Huawei LTE routers (B618 and similar firmware)

The router uses a SCRAM-like challenge-response exchange:
1. GET the web root to receive session cookies
2. GET /api/webserver/token for an anonymous verification token
3. POST /api/user/challenge_login with a client nonce, receive salt/iterations
4. POST /api/user/authentication_login with the computed client proof

Every step takes the current verification token and returns the next one.
The caller keeps the token and hands it to the following step.
"""
import hashlib
import hmac
import logging
import secrets
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import requests

from router_errors import ProtocolError, TransportError

logger = logging.getLogger("b618reboot.auth")

TOKEN_PATH = "/api/webserver/token"
CHALLENGE_LOGIN_PATH = "/api/user/challenge_login"
AUTH_LOGIN_PATH = "/api/user/authentication_login"

VERIFICATION_TOKEN_HEADER = "__RequestVerificationToken"
XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'

SERVER_TOKEN_LENGTH = 64
SHORT_TOKEN_LENGTH = 32
CLIENT_KEY = b"Client Key"
# hashlib.pbkdf2_hmac takes the iteration count as a C int
MAX_ITERATIONS = 2**31 - 1


@dataclass(frozen=True)
class Challenge:
    """Parameters returned by the challenge login step"""
    iterations: int
    server_nonce: str
    salt: str


def build_request_xml(root_tag: str, fields) -> str:
    """
    Serialize ``fields`` as a flat XML document.

    Args:
        root_tag: Name of the root element
        fields: Iterable of (tag, value) pairs, written in order

    Returns:
        XML text without a declaration
    """
    root = ET.Element(root_tag)
    for tag, value in fields:
        ET.SubElement(root, tag).text = str(value)
    return ET.tostring(root, encoding="unicode")


def parse_response_xml(text: Union[bytes, str]) -> ET.Element:
    """
    Parse a router response body, raising ProtocolError if it is not XML.

    Pass the raw bytes where possible so the encoding declared in the
    document is honoured.
    """
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise ProtocolError(f"malformed XML response: {e}") from e


def node_text(root: ET.Element, tag: str, default: Optional[str] = None) -> Optional[str]:
    """Text of the first ``tag`` child of ``root``, or ``default`` if absent."""
    node = root.find(tag)
    if node is None:
        return default
    return (node.text or "").strip()


def short_token(token: Optional[str]) -> Optional[str]:
    """Shortened token for log output"""
    if not token:
        return token
    return token[:8] + "..."


def generate_client_nonce() -> str:
    """
    Generate the client nonce for the challenge login.

    Two independent 128-bit random values, hex encoded and concatenated.

    Returns:
        64 character lowercase hex string
    """
    return secrets.token_hex(16) + secrets.token_hex(16)


def compute_client_proof(password: str, client_nonce: str, iterations: int,
                         server_nonce: str, salt: str) -> str:
    """
    Compute the SCRAM-style client proof expected by the router.

    The auth message repeats the server nonce, which is what the firmware
    computes on its side.

    Args:
        password: Plain text account password
        client_nonce: Nonce sent in the challenge login
        iterations: PBKDF2 iteration count from the challenge response
        server_nonce: Server nonce from the challenge response
        salt: Hex encoded salt from the challenge response

    Returns:
        Hex encoded client proof
    """
    try:
        salt_bytes = bytes.fromhex(salt)
    except ValueError as e:
        raise ProtocolError(f"salt is not valid hex: {salt!r}") from e

    message = f"{client_nonce},{server_nonce},{server_nonce}".encode()
    salted_password = hashlib.pbkdf2_hmac("sha256", password.encode(), salt_bytes, iterations, 32)
    client_key = hmac.new(CLIENT_KEY, salted_password, hashlib.sha256).digest()
    stored_key = hashlib.sha256(client_key).digest()
    signature = hmac.new(message, stored_key, hashlib.sha256).digest()

    proof = bytes(a ^ b for a, b in zip(client_key, signature))
    return proof.hex()


def token_from_headers(response: requests.Response, length: Optional[int] = None) -> str:
    """
    Read the rolling verification token from response headers.

    Args:
        response: Router response
        length: Keep only the first ``length`` characters (None keeps all)

    Returns:
        The new verification token
    """
    token = response.headers.get(VERIFICATION_TOKEN_HEADER)
    if not token:
        raise ProtocolError(f"missing {VERIFICATION_TOKEN_HEADER} header in the response")
    if length is not None:
        token = token[:length]
    return token


def _auth_headers(token: Optional[str]) -> dict:
    headers = {"Content-Type": "text/html"}
    if token:
        headers[VERIFICATION_TOKEN_HEADER] = token
    return headers


def init_session(session: requests.Session, base_url: str, timeout=None) -> None:
    """
    Open a session on the router web interface.

    Only the cookies set by the response matter, the body is ignored.
    """
    logger.debug(f"Initializing session with GET {base_url}")
    start_time = time.time()
    try:
        response = session.get(base_url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise TransportError(str(e)) from e

    duration = time.time() - start_time
    logger.debug(f"Session initialized in {duration:.2f}s (status: {response.status_code})",
                 extra={'extra_data': {
                     'url': base_url,
                     'duration': duration,
                     'status_code': response.status_code,
                     'cookies': list(session.cookies.keys())
                 }})


def fetch_token(session: requests.Session, base_url: str, timeout=None) -> str:
    """
    Fetch the anonymous verification token.

    The token endpoint returns a 64 character value. Only the second half is
    accepted by the firmware as a verification token.

    Returns:
        The 32 character verification token
    """
    url = base_url + TOKEN_PATH
    logger.debug(f"Fetching anonymous token from {url}")
    try:
        response = session.get(url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise TransportError(str(e)) from e

    root = parse_response_xml(response.content)
    token = node_text(root, "token")
    if token is None:
        raise ProtocolError("token response has no <token> field")
    if len(token) != SERVER_TOKEN_LENGTH:
        raise ProtocolError(
            f"token has {len(token)} characters, expected {SERVER_TOKEN_LENGTH}")

    token = token[SHORT_TOKEN_LENGTH:]
    logger.debug(f"Received anonymous token {short_token(token)}")
    return token


def challenge_login(session: requests.Session, base_url: str, token: str,
                    username: str, client_nonce: str, timeout=None) -> Tuple[Challenge, str]:
    """
    Send the first login message and read the server challenge.

    Args:
        session: HTTP session holding the router cookies
        base_url: Router base URL
        token: Current verification token
        username: Account name
        client_nonce: Nonce from generate_client_nonce()

    Returns:
        Tuple of (Challenge, next verification token)
    """
    url = base_url + CHALLENGE_LOGIN_PATH
    body = XML_HEADER + build_request_xml("request", [
        ("username", username),
        ("firstnonce", client_nonce),
        ("mode", 1),
    ])

    logger.debug(f"Sending challenge login for user {username}")
    start_time = time.time()
    try:
        response = session.post(url, data=body.encode(), headers=_auth_headers(token), timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise TransportError(str(e)) from e
    duration = time.time() - start_time

    next_token = token_from_headers(response, SHORT_TOKEN_LENGTH)

    root = parse_response_xml(response.content)
    if root.tag == "error":
        raise ProtocolError(
            f"challenge login rejected with error {node_text(root, 'code', '')}")

    iterations = node_text(root, "iterations")
    server_nonce = node_text(root, "servernonce")
    salt = node_text(root, "salt")
    if not iterations or not server_nonce or not salt:
        raise ProtocolError("challenge response is missing iterations, servernonce or salt")
    try:
        iterations = int(iterations)
    except ValueError as e:
        raise ProtocolError(f"invalid iteration count: {iterations!r}") from e
    if not 0 < iterations <= MAX_ITERATIONS:
        raise ProtocolError(f"invalid iteration count: {iterations}")

    logger.debug(f"Challenge received in {duration:.2f}s",
                 extra={'extra_data': {
                     'duration': duration,
                     'status_code': response.status_code,
                     'iterations': iterations,
                     'token': short_token(next_token)
                 }})
    return Challenge(iterations=iterations, server_nonce=server_nonce, salt=salt), next_token


def authentication_login(session: requests.Session, base_url: str, token: str,
                         password: str, client_nonce: str, challenge: Challenge,
                         timeout=None) -> str:
    """
    Answer the server challenge with the client proof.

    The response body is not checked. The firmware returns the next token
    in full here, unlike the challenge step.

    Returns:
        The next verification token
    """
    url = base_url + AUTH_LOGIN_PATH
    proof = compute_client_proof(password, client_nonce, challenge.iterations,
                                 challenge.server_nonce, challenge.salt)
    body = XML_HEADER + build_request_xml("request", [
        ("clientproof", proof),
        ("finalnonce", challenge.server_nonce),
    ])

    logger.debug("Sending authentication login")
    start_time = time.time()
    try:
        response = session.post(url, data=body.encode(), headers=_auth_headers(token), timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise ProtocolError(f"authentication login request failed: {e}") from e
    duration = time.time() - start_time

    if not 200 <= response.status_code < 300:
        raise ProtocolError(f"authentication login failed with status {response.status_code}")

    try:
        root = ET.fromstring(response.content)
    except ET.ParseError:
        root = None
    if root is not None and root.tag == "error":
        logger.warning(f"Authentication login answered with error {node_text(root, 'code', '')}",
                       extra={'extra_data': {'code': node_text(root, 'code', '')}})

    next_token = token_from_headers(response)
    logger.debug(f"Authentication login completed in {duration:.2f}s",
                 extra={'extra_data': {
                     'duration': duration,
                     'status_code': response.status_code,
                     'token': short_token(next_token)
                 }})
    return next_token
