"""Google Sheets API host."""

import logging
from typing import Any, Optional, Sequence

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import settings
from ..errors import HostIOError
from .host import HostSession
from .models import (
    Address,
    DisplayAttribute,
    index_to_col_letter,
    quote_sheet,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

_UNKNOWN = object()


def _render(value: Any) -> str:
    """Text form of an unformatted cell value, as the engine compares it."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _color_to_hex(color: Optional[dict]) -> Optional[str]:
    """Convert a Sheets API color ({red, green, blue} in 0..1) to '#RRGGBB'."""
    if not color:
        return None
    channels = [int(round(color.get(name, 0.0) * 255)) for name in ("red", "green", "blue")]
    if channels == [255, 255, 255]:
        # white is the default fill
        return None
    return "#" + "".join(f"{c:02X}" for c in channels)


def _hex_to_color(value: Optional[str]) -> dict:
    """Convert '#RRGGBB' to a Sheets API color; None becomes white."""
    if not value:
        return {"red": 1.0, "green": 1.0, "blue": 1.0}
    hex_value = value.lstrip("#")
    return {
        "red": int(hex_value[0:2], 16) / 255.0,
        "green": int(hex_value[2:4], 16) / 255.0,
        "blue": int(hex_value[4:6], 16) / 255.0,
    }


class GoogleSheetsHost(HostSession):
    """
    Host backed by a live Google spreadsheet.

    Google Sheets recalculates on every write, so recalculate() has nothing
    to do; reads after a write already see updated formula values.
    """

    def __init__(self, spreadsheet_id: str, service=None):
        self.spreadsheet_id = spreadsheet_id
        self._service = service
        self._credentials = None
        self._sheet_ids: Optional[dict[str, int]] = None
        self._typed_by_address: dict[Address, tuple[str, Any]] = {}
        self._typed_by_text: dict[str, Any] = {}

    def _get_credentials(self) -> Credentials:
        """Get or refresh OAuth2 credentials."""
        creds = None

        if settings.google_token_path.exists():
            creds = Credentials.from_authorized_user_file(str(settings.google_token_path), SCOPES)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                if not settings.google_credentials_path.exists():
                    raise FileNotFoundError(
                        f"Google credentials file not found at {settings.google_credentials_path}. "
                        "Please download it from Google Cloud Console."
                    )
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(settings.google_credentials_path), SCOPES
                )
                creds = flow.run_local_server(port=0)

            # Save credentials for next run
            settings.google_token_path.parent.mkdir(parents=True, exist_ok=True)
            with open(settings.google_token_path, "w") as token:
                token.write(creds.to_json())

        return creds

    @property
    def service(self):
        """Get or create the Sheets API service."""
        if self._service is None:
            self._credentials = self._get_credentials()
            self._service = build("sheets", "v4", credentials=self._credentials)
        return self._service

    def _sheets_metadata(self) -> list[dict]:
        try:
            result = (
                self.service.spreadsheets()
                .get(spreadsheetId=self.spreadsheet_id, fields="sheets.properties")
                .execute()
            )
        except HttpError as e:
            raise HostIOError(f"Failed to get spreadsheet info: {e}")
        return [sheet["properties"] for sheet in result.get("sheets", [])]

    def _sheet_id(self, sheet_name: str) -> int:
        if self._sheet_ids is None:
            self._sheet_ids = {
                props["title"]: props["sheetId"] for props in self._sheets_metadata()
            }
        if sheet_name not in self._sheet_ids:
            raise HostIOError(f"Unknown sheet '{sheet_name}'")
        return self._sheet_ids[sheet_name]

    def read_formulas(self) -> dict[Address, str]:
        formulas: dict[Address, str] = {}
        for props in self._sheets_metadata():
            title = props["title"]
            grid = props.get("gridProperties", {})
            last_col = index_to_col_letter(max(grid.get("columnCount", 26), 1) - 1)
            last_row = max(grid.get("rowCount", 1000), 1)
            range_notation = f"{quote_sheet(title)}!A1:{last_col}{last_row}"
            try:
                result = (
                    self.service.spreadsheets()
                    .values()
                    .get(
                        spreadsheetId=self.spreadsheet_id,
                        range=range_notation,
                        valueRenderOption="FORMULA",
                    )
                    .execute()
                )
            except HttpError as e:
                raise HostIOError(f"Failed to read formulas from '{title}': {e}")

            for row_idx, row_values in enumerate(result.get("values", [])):
                for col_idx, value in enumerate(row_values):
                    if isinstance(value, str) and value.startswith("="):
                        formulas[Address(title, row_idx + 1, col_idx)] = value

            logger.info(f"Read {len(formulas)} formulas through sheet '{title}'")
        return formulas

    def read_cell_value(self, address: Address) -> str:
        return self.read_values([address])[0]

    def read_values(self, addresses: Sequence[Address]) -> list[str]:
        if not addresses:
            return []
        try:
            result = (
                self.service.spreadsheets()
                .values()
                .batchGet(
                    spreadsheetId=self.spreadsheet_id,
                    ranges=[address.a1 for address in addresses],
                    valueRenderOption="UNFORMATTED_VALUE",
                )
                .execute()
            )
        except HttpError as e:
            raise HostIOError(f"Failed to read values: {e}")

        values = []
        for address, value_range in zip(addresses, result.get("valueRanges", [])):
            rows = value_range.get("values", [])
            raw = rows[0][0] if rows and rows[0] else ""
            text = _render(raw)
            # remember the typed value so it can be written back unchanged
            self._typed_by_address[address] = (text, raw)
            self._typed_by_text.setdefault(text, raw)
            values.append(text)
        if len(values) != len(addresses):
            raise HostIOError(
                f"Expected {len(addresses)} values from the host, received {len(values)}"
            )
        return values

    def write_cell_value(self, address: Address, text: str) -> None:
        """Write content as if the user typed it (formulas and numbers are parsed)."""
        self._batch_update([address], [text], "USER_ENTERED")

    def write_values(self, addresses: Sequence[Address], values: Sequence[str]) -> None:
        """
        Write values previously read from the spreadsheet.

        Values the host has read are written back with their original types
        (RAW), so text such as "007" stays text and restores are exact. A batch
        holding any value never read falls back to USER_ENTERED.
        """
        if len(addresses) != len(values):
            raise ValueError(
                f"Cannot write {len(values)} values into {len(addresses)} cells"
            )
        typed = [self._typed_value(address, text) for address, text in zip(addresses, values)]
        if any(value is _UNKNOWN for value in typed):
            logger.debug("Writing unread values as user-entered text")
            self._batch_update(addresses, values, "USER_ENTERED")
        else:
            self._batch_update(addresses, typed, "RAW")

    def _typed_value(self, address: Address, text: str) -> Any:
        original = self._typed_by_address.get(address)
        if original is not None and original[0] == text:
            return original[1]
        return self._typed_by_text.get(text, _UNKNOWN)

    def _batch_update(self, addresses: Sequence[Address], values: Sequence[Any], input_option: str):
        body = {
            "valueInputOption": input_option,
            "data": [
                {"range": address.a1, "values": [[value]]}
                for address, value in zip(addresses, values)
            ],
        }
        try:
            (
                self.service.spreadsheets()
                .values()
                .batchUpdate(spreadsheetId=self.spreadsheet_id, body=body)
                .execute()
            )
        except HttpError as e:
            raise HostIOError(f"Failed to write values: {e}")

    def recalculate(self) -> None:
        pass

    def get_display_attribute(self, address: Address) -> DisplayAttribute:
        try:
            result = (
                self.service.spreadsheets()
                .get(
                    spreadsheetId=self.spreadsheet_id,
                    ranges=[address.a1],
                    fields="sheets.data.rowData.values.userEnteredFormat.backgroundColor",
                )
                .execute()
            )
        except HttpError as e:
            raise HostIOError(f"Failed to read format of {address}: {e}")

        try:
            cell = result["sheets"][0]["data"][0]["rowData"][0]["values"][0]
            color = cell.get("userEnteredFormat", {}).get("backgroundColor")
        except (KeyError, IndexError):
            color = None
        return DisplayAttribute(background_color=_color_to_hex(color))

    def set_display_attribute(self, address: Address, attr: DisplayAttribute) -> None:
        body = {
            "requests": [
                {
                    "repeatCell": {
                        "range": {
                            "sheetId": self._sheet_id(address.sheet),
                            "startRowIndex": address.row - 1,
                            "endRowIndex": address.row,
                            "startColumnIndex": address.col,
                            "endColumnIndex": address.col + 1,
                        },
                        "cell": {
                            "userEnteredFormat": {
                                "backgroundColor": _hex_to_color(attr.background_color)
                            }
                        },
                        "fields": "userEnteredFormat.backgroundColor",
                    }
                }
            ]
        }
        try:
            (
                self.service.spreadsheets()
                .batchUpdate(spreadsheetId=self.spreadsheet_id, body=body)
                .execute()
            )
        except HttpError as e:
            raise HostIOError(f"Failed to set format of {address}: {e}")
