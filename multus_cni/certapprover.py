"""Review logic for certificate signing requests submitted by multus nodes.

A request is approved only when it was made by a node or multus user, for a
node name that is a valid DNS subdomain, with exactly the expected key usages,
from expected groups, with the expected subject and a bounded lifetime.
"""

from __future__ import annotations

import base64
import binascii
import enum
import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)

CONTROLLER_NAME = "csr-approver"
NAME_PREFIX = "system:multus"
ORGANIZATION = ["system:multus"]
GROUPS = frozenset({"system:nodes", "system:multus", "system:authenticated"})
USER_PREFIXES = frozenset({"system:node", NAME_PREFIX})
USAGE_DIGITAL_SIGNATURE = "digital signature"
USAGE_CLIENT_AUTH = "client auth"
USAGES = frozenset({USAGE_DIGITAL_SIGNATURE, USAGE_CLIENT_AUTH})
KUBE_APISERVER_CLIENT_SIGNER_NAME = "kubernetes.io/kube-apiserver-client"
CONDITION_APPROVED = "Approved"
CONDITION_DENIED = "Denied"
MAX_DURATION_SECONDS = 24 * 365 * 3600

DNS1123_SUBDOMAIN_MAX_LENGTH = 253
_DNS1123_LABEL_FMT = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS1123_SUBDOMAIN_FMT = _DNS1123_LABEL_FMT + r"(\." + _DNS1123_LABEL_FMT + r")*"
_DNS1123_SUBDOMAIN = re.compile(_DNS1123_SUBDOMAIN_FMT)

_PEM_BLOCK = re.compile(rb"-----BEGIN ([^\r\n-]*)-----\r?\n(.*?)-----END \1-----", re.S)


class Decision(enum.Enum):
    """The outcome of reviewing a request."""

    SKIP = "skip"
    APPROVE = "approve"
    DENY = "deny"


@dataclass
class CertificateSigningRequest:
    """The parts of a Kubernetes CertificateSigningRequest the approver reads."""

    name: str
    request: bytes
    username: str = ""
    groups: list[str] = field(default_factory=list)
    usages: list[str] = field(default_factory=list)
    signer_name: str = ""
    expiration_seconds: int | None = None
    certificate: bytes = b""
    conditions: list[dict[str, str]] = field(default_factory=list)
    namespace: str = ""


@dataclass
class Review:
    """The decision taken on a request, with the reason for it."""

    decision: Decision
    message: str = ""
    node_name: str = "unknown"


def _quote(value: str) -> str:
    return json.dumps(value)


def _go_list(values: Iterable[str]) -> str:
    return "[" + " ".join(values) + "]"


def _first_pem_block(data: bytes) -> bytes | None:
    for match in _PEM_BLOCK.finditer(data or b""):
        body = b"".join(match.group(2).split())
        try:
            return base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            continue
    return None


def _subject(csr: x509.CertificateSigningRequest) -> tuple[str, list[str]]:
    common_names = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    organizations = csr.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
    common_name = str(common_names[-1].value) if common_names else ""
    return common_name, [str(attr.value) for attr in organizations]


def _parse_request(request: bytes) -> x509.CertificateSigningRequest:
    der = _first_pem_block(request)
    if der is None:
        raise ValueError(
            "failed to PEM-parse the CSR block in .spec.request: no CSRs were found"
        )
    try:
        return x509.load_der_x509_csr(der)
    except ValueError as exc:
        raise ValueError(f"failed to parse the CSR bytes: {exc}") from exc


def is_approved_or_denied(conditions) -> bool:
    """Return True if any condition marks the request approved or denied."""
    return any(
        condition.get("type") in (CONDITION_APPROVED, CONDITION_DENIED)
        for condition in conditions or []
    )


def _dns1123_subdomain_errors(value: str) -> list[str]:
    errors = []
    if len(value) > DNS1123_SUBDOMAIN_MAX_LENGTH:
        errors.append(f"must be no more than {DNS1123_SUBDOMAIN_MAX_LENGTH} characters")
    if not _DNS1123_SUBDOMAIN.fullmatch(value):
        errors.append(
            "a lowercase RFC 1123 subdomain must consist of lower case alphanumeric "
            "characters, '-' or '.', and must start and end with an alphanumeric "
            "character (e.g. 'example.com', regex used for validation is "
            f"'{_DNS1123_SUBDOMAIN_FMT}')"
        )
    return errors


def is_dns1123_subdomain(value) -> bool:
    """Return True if ``value`` is a valid RFC 1123 DNS subdomain."""
    return not _dns1123_subdomain_errors(value)


def filter_csr(csr: CertificateSigningRequest, common_name_prefix=NAME_PREFIX) -> bool:
    """Return True if the request is one the approver should look at."""
    ns_name = f"{csr.namespace}/{csr.name}"
    der = _first_pem_block(csr.request)
    if der is None:
        logger.error(
            "Failed to PEM-parse the CSR block in .spec.request: no CSRs were found in %s",
            ns_name,
        )
        return False
    try:
        parsed = x509.load_der_x509_csr(der)
    except ValueError as exc:
        logger.error("Failed to parse the CSR .spec.request of %r: %s", ns_name, exc)
        return False
    common_name, _ = _subject(parsed)
    return (
        common_name.startswith(common_name_prefix)
        and csr.signer_name == KUBE_APISERVER_CLIENT_SIGNER_NAME
    )


def review_csr(csr: CertificateSigningRequest, common_name_prefix=NAME_PREFIX) -> Review:
    """Decide whether ``csr`` is approved, denied or left alone.

    Raises ``ValueError`` when the request cannot be parsed at all.
    """
    if csr.certificate:
        logger.debug("CSR %s is already signed", csr.name)
        return Review(Decision.SKIP, f"CSR {csr.name} is already signed")
    if is_approved_or_denied(csr.conditions):
        logger.debug("CSR %s is already approved/denied", csr.name)
        return Review(Decision.SKIP, f"CSR {csr.name} is already approved/denied")

    parsed = _parse_request(csr.request)

    username = csr.username
    i = username.rfind(":")
    if i == -1 or i == len(username) - 1:
        raise ValueError(f"failed to parse the username: {username}")
    prefix, node_name = username[:i], username[i + 1 :]

    def deny(message: str) -> Review:
        return Review(Decision.DENY, message, node_name)

    if prefix not in USER_PREFIXES:
        return deny(
            f"CSR {_quote(csr.name)} was created by an unexpected user: {_quote(username)}"
        )

    errors = _dns1123_subdomain_errors(node_name)
    if errors:
        return deny(
            f"extracted node name {_quote(node_name)} is not a valid DNS subdomain "
            f"{_go_list(errors)}"
        )

    usages = set(csr.usages)
    if usages != USAGES:
        return deny(
            f"CSR {_quote(csr.name)} was created with unexpected usages: "
            f"{_go_list(sorted(usages))}"
        )

    if not set(csr.groups) <= GROUPS:
        return deny(
            f"CSR {_quote(csr.name)} was created by a user with unexpected groups: "
            f"{_go_list(csr.groups)}"
        )

    common_name, organizations = _subject(parsed)
    expected_subject = f"{common_name_prefix}:{node_name}"
    if common_name != expected_subject:
        return deny(
            f"expected the CSR's commonName to be {_quote(expected_subject)}, "
            f"but it is {_quote(common_name)}"
        )

    if organizations != ORGANIZATION:
        return deny(
            f"expected the CSR's organization to be {_go_list(ORGANIZATION)}, "
            f"but it is {_go_list(organizations)}"
        )

    if csr.expiration_seconds is None:
        return deny(
            f"CSR {_quote(csr.name)} was created without specyfying the expirationSeconds"
        )

    if csr.expiration_seconds > MAX_DURATION_SECONDS:
        return deny(
            f"CSR {_quote(csr.name)} was created with invalid expirationSeconds value: "
            f"{csr.expiration_seconds}"
        )

    return Review(Decision.APPROVE, f"Auto-approved CSR {_quote(csr.name)}", node_name)


def apply_review(csr: CertificateSigningRequest, review: Review) -> dict[str, str] | None:
    """Record ``review`` as a condition on ``csr`` and return the condition.

    A skipped review leaves the request untouched and returns None.
    """
    if review.decision is Decision.APPROVE:
        condition = {
            "type": CONDITION_APPROVED,
            "status": "True",
            "reason": "AutoApproved",
            "message": f"Auto-approved CSR {_quote(csr.name)}",
        }
        logger.info("CSR %r has been approved by %s", csr.name, CONTROLLER_NAME)
    elif review.decision is Decision.DENY:
        condition = {
            "type": CONDITION_DENIED,
            "status": "True",
            "reason": "CSRDenied",
            "message": review.message,
        }
        logger.warning(
            "The CSR %r has been denied by: %s: %s", csr.name, CONTROLLER_NAME, review.message
        )
    else:
        return None
    csr.conditions.append(condition)
    return condition