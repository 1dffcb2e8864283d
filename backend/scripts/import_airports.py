"""CLI script to load airports from a CSV or JSON file into the catalog.
Usage: python scripts/import_airports.py FILE [--dry-run]
       python scripts/import_airports.py --seed
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `flightdeck` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from flightdeck.database import engine, create_db_and_tables, seed_airports
from flightdeck import services
from flightdeck.errors import DuplicateAirportError
from flightdeck.utils.airport_loader import parse_airports


def main(path: pathlib.Path = None, dry_run: bool = False, seed: bool = False):
    """Parse `path` and add each airport that is not already present.

    Rows that fail validation and codes that already exist are reported
    and skipped. Results are printed to stdout.
    """
    create_db_and_tables()
    with Session(engine) as session:
        if seed:
            print(f'Seeded {seed_airports(session)} airports')
            return
        records, errors = parse_airports(path.read_bytes(), path.name)
        for err in errors:
            print(f"Row {err['index']}: {err['error']}")
        catalog = services.AirportCatalog(session)
        created = 0
        skipped = 0
        for rec in records:
            if dry_run:
                print(f'Would add {rec.code} {rec.name}')
                continue
            try:
                catalog.add(rec)
                created += 1
            except DuplicateAirportError:
                skipped += 1
        print(f'Total added airports: {created}, skipped {skipped}, errors {len(errors)}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('file', nargs='?', type=pathlib.Path, help='CSV or JSON file with airport rows')
    parser.add_argument('--dry-run', action='store_true', help='Parse and validate without writing')
    parser.add_argument('--seed', action='store_true', help='Insert the built-in airports if the catalog is empty')
    args = parser.parse_args()
    if not args.seed and args.file is None:
        parser.error('a file is required unless --seed is given')
    main(path=args.file, dry_run=args.dry_run, seed=args.seed)
