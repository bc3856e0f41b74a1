from dataclasses import dataclass


@dataclass(frozen=True)
class Account:
    """An emulator account known to the language server."""
    name: str
    address: str
    active: bool = False

    def full_name(self) -> str:
        return f"{self.name} ({self.address})"
