from typing import Optional, Tuple

ContactSet = Tuple[str, ...]


class ContactStore:
    """In-memory holder for up to two emergency contacts."""

    def __init__(self) -> None:
        self._contacts: ContactSet = ()

    def save(self, contact1: Optional[str] = None, contact2: Optional[str] = None) -> None:
        # Empty text fields count as "no contact"; numbers are not validated.
        self._contacts = tuple(c for c in (contact1, contact2) if c)

    def current(self) -> ContactSet:
        return self._contacts
