from collections.abc import Mapping
from typing import Any


def _field(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def format_grid_short_label(source: Any) -> str:
    """Compact patient label for a grid cell, e.g. ``"Ч.Бат (A-12)"``.

    ``source`` is either the patient itself (``ovog``, ``name``, ``book_number``)
    or an appointment row carrying it under ``patient`` and, for the book
    number, ``patient.patient_book.book_number``. Flat ``patient_name`` and
    ``patient_ovog`` fields are used when no patient is attached.
    """
    patient = _field(source, 'patient')
    if patient is None:
        patient = source

    name = _text(_field(patient, 'name') or _field(source, 'patient_name'))
    ovog = _text(_field(patient, 'ovog') or _field(source, 'patient_ovog'))

    book_number = _field(patient, 'book_number')
    if book_number is None:
        book_number = _field(_field(patient, 'patient_book'), 'book_number')
    book_number = _text(book_number)

    display_name = name
    if ovog:
        display_name = f'{ovog[0].upper()}.{name}'

    if not display_name:
        return ''

    if book_number:
        return f'{display_name} ({book_number})'

    return display_name
