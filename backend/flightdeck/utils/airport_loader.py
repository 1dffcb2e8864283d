"""Airport seed data and file parsing.

Parsers return a list of `AirportRecord` values. Rows with a missing
field or a code that is not three letters are reported as errors
instead of aborting the whole file.
"""

import csv
import io
import json
from typing import Dict, List, Tuple

from ..quiz import AirportRecord

FIELDS = ('code', 'name', 'city', 'country', 'region')

DEFAULT_AIRPORTS = [
    AirportRecord("ATL", "Hartsfield-Jackson Atlanta International", "Atlanta", "USA", "North America"),
    AirportRecord("LAX", "Los Angeles International", "Los Angeles", "USA", "North America"),
    AirportRecord("ORD", "O'Hare International", "Chicago", "USA", "North America"),
    AirportRecord("JFK", "John F. Kennedy International", "New York", "USA", "North America"),
    AirportRecord("DFW", "Dallas/Fort Worth International", "Dallas", "USA", "North America"),
    AirportRecord("DEN", "Denver International", "Denver", "USA", "North America"),
    AirportRecord("LAS", "McCarran International", "Las Vegas", "USA", "North America"),
    AirportRecord("PHX", "Phoenix Sky Harbor International", "Phoenix", "USA", "North America"),
    AirportRecord("MIA", "Miami International", "Miami", "USA", "North America"),
    AirportRecord("SEA", "Seattle-Tacoma International", "Seattle", "USA", "North America"),
]


def normalize_code(code: str) -> str:
    """Upper-case and validate a three letter airport code."""
    code = (code or '').strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError(f'airport code must be exactly 3 letters: {code!r}')
    return code


def to_record(item: Dict) -> AirportRecord:
    """Build an `AirportRecord` from a loosely keyed dict.

    `iata_code` is accepted as an alias for `code`.
    """
    if not isinstance(item, dict):
        raise ValueError('airport item must be an object')
    raw = dict(item)
    if 'code' not in raw and 'iata_code' in raw:
        raw['code'] = raw['iata_code']
    values = {}
    for f in FIELDS:
        v = raw.get(f)
        if v is None or not str(v).strip():
            raise ValueError(f'missing field: {f}')
        values[f] = str(v).strip()
    values['code'] = normalize_code(values['code'])
    return AirportRecord(**values)


def parse_airports(file_bytes: bytes, filename: str) -> Tuple[List[AirportRecord], List[Dict]]:
    """Dispatch to the CSV or JSON parser based on file extension."""
    name = filename.lower()
    if name.endswith('.json'):
        items = json.loads(file_bytes.decode('utf-8'))
        if not isinstance(items, list):
            raise ValueError('JSON airport file must contain an array')
    elif name.endswith('.csv'):
        items = list(csv.DictReader(io.StringIO(file_bytes.decode('utf-8-sig'))))
    else:
        raise ValueError('Unsupported file type')
    records = []
    errors = []
    for idx, item in enumerate(items):
        try:
            records.append(to_record(item))
        except ValueError as e:
            errors.append({'index': idx, 'error': str(e)})
    return records, errors
