"""Parsing of language server command responses.

The server encodes struct fields with Go-style capitalised keys
(``Name``, ``Address``, ``Active``); lower-case keys are accepted too.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .account import Account


def _field(obj: Mapping[str, Any], key: str, default: Any = None) -> Any:
    if key in obj:
        return obj[key]
    return obj.get(key.capitalize(), default)


def _normalize_address(address: str) -> str:
    address = str(address)
    return address if address.startswith("0x") else f"0x{address}"


class ResponseError(ValueError):
    """The language server returned a payload that could not be parsed."""


class ClientAccount:

    def __init__(self, obj: Any):
        if not isinstance(obj, Mapping):
            raise ResponseError(f"Unexpected account payload: {obj!r}")
        name = _field(obj, "name")
        address = _field(obj, "address")
        if not name or not address:
            raise ResponseError(f"Account payload missing name or address: {obj!r}")
        self.name = str(name)
        self.address = _normalize_address(address)
        self.active = bool(_field(obj, "active", False))

    def as_account(self) -> Account:
        return Account(name=self.name, address=self.address, active=self.active)


class GetAccountsResponse:
    """Accounts known to the server, in server order.

    Accepts either a list of account objects or a mapping of account name
    to address / account object.
    """

    def __init__(self, obj: Any):
        self.accounts: List[Account] = []

        if obj is None:
            return
        if isinstance(obj, Mapping):
            items = []
            for name, value in obj.items():
                if isinstance(value, Mapping):
                    items.append({"name": name, **value})
                else:
                    items.append({"name": name, "address": value})
        elif isinstance(obj, list):
            items = obj
        else:
            raise ResponseError(f"Unexpected getAccounts payload: {obj!r}")

        self.accounts = [ClientAccount(item).as_account() for item in items]

    @property
    def active(self) -> Optional[Account]:
        for account in self.accounts:
            if account.active:
                return account
        return None

    def by_name(self) -> Dict[str, Account]:
        return {account.name: account for account in self.accounts}


__all__ = ["ClientAccount", "GetAccountsResponse", "ResponseError"]
