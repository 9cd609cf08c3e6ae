"""
Mailbox page parser.

The mailbox page carries its state in two script assignments:

- ``GLOBALS``: account metadata. Its first array-of-arrays child is a list
  of ``[key, ...values]`` rows; the ``ld`` row holds label counts and the
  optional ``sl`` row lists smart labels.
- ``VIEW_DATA``: the rendered view. Entries tagged ``tb`` are pages of
  conversation previews, ``["tb", offset, [thread, thread, ...]]``.

Both are decoded with the literal decoder in ``script_data``; nothing on
the page is executed.
"""
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from mail_checker.models import LabelCount, MailboxSnapshot, Message
from mail_checker.network.document import Document, text_of
from mail_checker.core.script_data import find_assignment
from mail_checker.utils.errors import MalformedMailboxDataError


logger = logging.getLogger(__name__)

GLOBALS_VARIABLE = "GLOBALS"
VIEW_DATA_VARIABLE = "VIEW_DATA"

LABEL_DATA_KEY = "ld"
SMART_LABELS_KEY = "sl"
THREAD_PAGE_TAG = "tb"

# Built-in labels; keys are stable across page versions
SYSTEM_LABELS = {
    "^i": "Inbox",
    "^s": "Spam",
    "^t": "Starred",
    "^f": "Sent",
    "^r": "Drafts",
    "^k": "Trash",
    "^all": "All Mail",
    "^b": "Chats",
    "^io_im": "Important",
}

# Positions of the fields inside one thread array
SNIPPET_LAYOUT_V1 = {
    "thread_id": 0,
    "read": 3,
    "starred": 4,
    "people": 7,
    "subject": 9,
    "snippet": 10,
    "attachments": 13,
    "short_date": 14,
    "full_date": 15,
}

# "Mon, Oct 19, 2026 at 10:15 AM": "at" is a locale artifact
_LOCALE_ARTIFACT = re.compile(r"\s+at\s+")
_DATE_FORMATS = (
    "%a, %b %d, %Y %I:%M %p",
    "%a, %b %d, %Y, %I:%M %p",
    "%b %d, %Y %I:%M %p",
    "%a, %d %b %Y %H:%M",
    "%a, %b %d, %Y %H:%M",
)


def _is_array_of_arrays(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) > 0
        and all(isinstance(item, list) for item in value)
    )


def _count(value: Any) -> int:
    """Coerce a label count; negative or missing means unknown, i.e. 0."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


def _is_label_row(row: Any) -> bool:
    return (
        isinstance(row, list)
        and len(row) >= 3
        and isinstance(row[0], str)
        and all(isinstance(n, (int, float)) and not isinstance(n, bool) for n in row[1:3])
    )


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse the full date string of a conversation preview.

    Returns:
        The parsed datetime, or None when the format is not recognized.
    """
    if not value:
        return None
    cleaned = value.replace("\u202f", " ").replace("\xa0", " ")
    cleaned = _LOCALE_ARTIFACT.sub(" ", cleaned).strip()
    for date_format in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, date_format)
        except ValueError:
            continue
    logger.debug(f"Unrecognized date format: {value!r}")
    return None


class MailboxParser:
    """Extracts label counts and conversation previews from a mailbox page."""

    def __init__(self, layout: Optional[Dict[str, int]] = None):
        self.layout = layout or SNIPPET_LAYOUT_V1

    def parse(self, document: Document) -> MailboxSnapshot:
        """
        Parse a mailbox page.

        Args:
            document: The page reached after logging in.

        Returns:
            The labels and previews found on the page.

        Raises:
            MalformedMailboxDataError: If the label metadata is missing or
                does not have the expected shape.
        """
        globals_value = None
        view_data = None
        for script in document.scripts():
            if globals_value is None:
                globals_value = find_assignment(script, GLOBALS_VARIABLE)
            if view_data is None:
                view_data = find_assignment(script, VIEW_DATA_VARIABLE)

        if globals_value is None:
            raise MalformedMailboxDataError(f"No {GLOBALS_VARIABLE} found on {document.url}")

        labels = self.extract_labels(globals_value)
        if view_data is None:
            logger.info(f"No {VIEW_DATA_VARIABLE} on {document.url}, skipping previews")
            messages = []
        else:
            messages = self.extract_messages(view_data)
        return MailboxSnapshot(labels=labels, messages=messages)

    def extract_labels(self, globals_value: Any) -> Dict[str, LabelCount]:
        """
        Read label counts out of the decoded GLOBALS value.

        Raises:
            MalformedMailboxDataError: If the metadata has no label data.
        """
        if not isinstance(globals_value, list):
            raise MalformedMailboxDataError(f"{GLOBALS_VARIABLE} is not an array")
        payload = next((child for child in globals_value if _is_array_of_arrays(child)), None)
        if payload is None:
            raise MalformedMailboxDataError(f"{GLOBALS_VARIABLE} has no metadata rows")

        entries: Dict[str, List[Any]] = {}
        for row in payload:
            if row and isinstance(row[0], str):
                entries.setdefault(row[0], row[1:])

        names = dict(SYSTEM_LABELS)
        for smart_label in self._rows(entries.get(SMART_LABELS_KEY)):
            if len(smart_label) >= 2 and isinstance(smart_label[0], str):
                names[smart_label[0]] = str(smart_label[1])

        if LABEL_DATA_KEY in entries:
            # A list of chunks, each a list of label rows
            rows = []
            for chunk in entries[LABEL_DATA_KEY]:
                if not isinstance(chunk, list):
                    raise MalformedMailboxDataError(f"Label data chunk is not an array: {chunk!r}")
                rows.extend(chunk)
        elif all(_is_label_row(row) for row in payload):
            rows = payload
        else:
            raise MalformedMailboxDataError(f"{GLOBALS_VARIABLE} has no '{LABEL_DATA_KEY}' entry")

        labels: Dict[str, LabelCount] = {}
        for row in rows:
            if not isinstance(row, list) or not row or not isinstance(row[0], str):
                logger.warning(f"Skipping malformed label row: {row!r}")
                continue
            key = row[0]
            unread = _count(row[1]) if len(row) > 1 else 0
            total = _count(row[2]) if len(row) > 2 else 0
            labels[names.get(key, key)] = LabelCount(unread=unread, total=total)
        return labels

    @staticmethod
    def _rows(value: Any) -> List[list]:
        """Smart label entries come either flat or wrapped in one chunk."""
        if not isinstance(value, list):
            return []
        if len(value) == 1 and _is_array_of_arrays(value[0]):
            value = value[0]
        return [row for row in value if isinstance(row, list)]

    def extract_messages(self, view_data: Any) -> List[Message]:
        """
        Read conversation previews out of the decoded VIEW_DATA value.

        Malformed previews are skipped with a warning.

        Raises:
            MalformedMailboxDataError: If VIEW_DATA is not an array.
        """
        if not isinstance(view_data, list):
            raise MalformedMailboxDataError(f"{VIEW_DATA_VARIABLE} is not an array")

        messages: List[Message] = []
        for entry in view_data:
            if not (isinstance(entry, list) and entry and entry[0] == THREAD_PAGE_TAG):
                continue
            page = entry[2] if len(entry) > 2 else None
            if not isinstance(page, list):
                logger.warning(f"Skipping thread page without threads: {entry!r:.80}")
                continue
            for raw in page:
                try:
                    messages.append(self.decode_message(raw))
                except (MalformedMailboxDataError, IndexError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed snippet: {e}")
        return messages

    def decode_message(self, raw: Any) -> Message:
        """
        Decode one thread array with the positional layout.

        Raises:
            MalformedMailboxDataError: If the array is too short or has no id.
        """
        layout = self.layout
        if not isinstance(raw, list) or len(raw) <= max(layout.values()):
            raise MalformedMailboxDataError(f"Snippet has an unexpected shape: {raw!r:.80}")
        thread_id = raw[layout["thread_id"]]
        if not isinstance(thread_id, str) or not thread_id:
            raise MalformedMailboxDataError(f"Snippet has no thread id: {raw!r:.80}")

        attachments = raw[layout["attachments"]]
        if isinstance(attachments, str):
            attachments = [name for name in attachments.split(",") if name]
        elif not isinstance(attachments, list):
            attachments = []

        full_date = raw[layout["full_date"]]
        return Message(
            thread_id=thread_id,
            is_read=bool(raw[layout["read"]]),
            is_starred=bool(raw[layout["starred"]]),
            people=text_of(raw[layout["people"]]),
            subject=text_of(raw[layout["subject"]]),
            snippet=text_of(raw[layout["snippet"]]),
            attachments=[str(name) for name in attachments if name],
            short_date=text_of(raw[layout["short_date"]]),
            date=parse_date(full_date if isinstance(full_date, str) else None),
        )
