"""Spreadsheet hosts and cell address models."""

from .host import HostSession
from .memory import InMemoryWorkbook
from .models import Address, RangeRef, DisplayAttribute, CellData

__all__ = [
    "HostSession",
    "InMemoryWorkbook",
    "Address",
    "RangeRef",
    "DisplayAttribute",
    "CellData",
]
