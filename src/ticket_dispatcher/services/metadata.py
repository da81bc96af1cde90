import re
from email.utils import getaddresses, parseaddr
from typing import Optional

_ADDRESS_SPLIT_RE = re.compile(r"[,<>\s]+")
_AUTH_PASS_MARKERS = ("spf=pass", "dkim=pass")


def _split_address(address: str) -> tuple[str, str]:
    local, _, domain = address.strip().partition("@")
    return local, domain.strip().lower()


def _issue_from_address(address: str, ticket_domain: str) -> Optional[int]:
    local, domain = _split_address(address)
    if local.isdecimal() and domain and domain == ticket_domain:
        return int(local)
    return None


def extract_issue_number(to_header: str, cc_header: str, ticket_domain: str) -> Optional[int]:
    """Return the first numeric local part addressed to the ticket domain.

    To is searched before Cc, e.g. ``123@issues.example.com`` yields 123.
    """
    ticket_domain = (ticket_domain or "").strip().lower()
    for header in (to_header, cc_header):
        if not header:
            continue

        addresses = [address for _, address in getaddresses([header]) if "@" in address]
        if not addresses:
            # Unparseable list, fall back to splitting on separators.
            addresses = [token for token in _ADDRESS_SPLIT_RE.split(header) if "@" in token]

        for address in addresses:
            issue_number = _issue_from_address(address, ticket_domain)
            if issue_number is not None:
                return issue_number
    return None


def extract_sender_domain(from_header: str) -> str:
    if not from_header:
        return ""
    _, address = parseaddr(from_header)
    if "@" in address:
        return _split_address(address)[1]
    if "@" in from_header:
        return from_header.rsplit("@", 1)[1].strip(" \t\r\n<>\"").lower()
    return ""


def passes_email_auth(authentication_results: str) -> bool:
    value = (authentication_results or "").lower()
    return any(marker in value for marker in _AUTH_PASS_MARKERS)


def is_whitelisted(sender_domain: str, whitelist_domain: str) -> bool:
    sender = (sender_domain or "").strip().lower()
    allowed = (whitelist_domain or "").strip().lower().lstrip(".")
    if not sender or not allowed:
        return False
    return sender == allowed or sender.endswith("." + allowed)
