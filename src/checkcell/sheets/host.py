"""Host spreadsheet interface used by the analysis engine."""

from abc import ABC, abstractmethod
from typing import Sequence

from .models import Address, DisplayAttribute


class HostSession(ABC):
    """Abstract base class for spreadsheet hosts.

    The engine never holds a global document; every pass receives a host
    explicitly and talks to it only through these calls.
    """

    @abstractmethod
    def read_formulas(self) -> dict[Address, str]:
        """Return the formula text of every formula cell, in sheet order."""
        pass

    @abstractmethod
    def read_cell_value(self, address: Address) -> str:
        """Return the current (computed) value of a cell as text."""
        pass

    @abstractmethod
    def write_cell_value(self, address: Address, text: str) -> None:
        """Overwrite the content of a cell."""
        pass

    @abstractmethod
    def recalculate(self) -> None:
        """Bring every formula value up to date with the current inputs."""
        pass

    @abstractmethod
    def get_display_attribute(self, address: Address) -> DisplayAttribute:
        """Return the visual state of a cell."""
        pass

    @abstractmethod
    def set_display_attribute(self, address: Address, attr: DisplayAttribute) -> None:
        """Change the visual state of a cell."""
        pass

    def read_values(self, addresses: Sequence[Address]) -> list[str]:
        """Read several cell values. Hosts with batch calls override this."""
        return [self.read_cell_value(address) for address in addresses]

    def write_values(self, addresses: Sequence[Address], values: Sequence[str]) -> None:
        """Write several cell values. Hosts with batch calls override this."""
        if len(addresses) != len(values):
            raise ValueError(
                f"Cannot write {len(values)} values into {len(addresses)} cells"
            )
        for address, text in zip(addresses, values):
            self.write_cell_value(address, text)
