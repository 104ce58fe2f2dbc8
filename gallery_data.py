#!/usr/bin/env python3
"""
Gallery Data Import and Check Script

Bulk-loads generated avatars into the gallery database and reports on what
the database holds.

    python gallery_data.py import ./generated
    python gallery_data.py check

Every `*.json` file in the import directory describes one generation run:
`username`, `generated_avatar` (base64 PNG payload), `status` and
`created_at`. Files are processed in name order. A record is skipped when its
status is not "success" or when its username is already a person name in the
gallery. Imported items are public, owned by the system user and keep the
source timestamp. Failures are counted per file and never stop the run.
"""

import sys
import json
import asyncio
import argparse
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, col

from core.auth import User
from core.database import async_session, create_db_and_tables
from core.exceptions import GalleryAPIException
from core.logging_config import setup_logging
from core.models import GalleryItem
from core.validation import InputValidator
from services.gallery_service import GalleryService

logger = logging.getLogger("services.gallery_data")

SYSTEM_USER = User(id="11111111-1111-1111-1111-111111111111", name="System")


@dataclass
class ImportReport:
    imported: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass
class CheckReport:
    total: int = 0
    data_uri_count: int = 0
    url_count: int = 0


def parse_created_at(value) -> Optional[datetime]:
    """ISO-8601 timestamp; naive values are taken as UTC"""
    if not value:
        return None
    created_at = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at


async def existing_person_names(session: AsyncSession) -> Set[str]:
    """Person names of every stored item, public or not"""
    result = await session.execute(
        select(GalleryItem.person_name).where(col(GalleryItem.person_name).is_not(None))
    )
    return set(result.scalars().all())


async def list_records(session: AsyncSession) -> List[GalleryItem]:
    """All items, newest first"""
    result = await session.execute(
        select(GalleryItem).order_by(col(GalleryItem.created_at).desc())
    )
    return list(result.scalars().all())


async def import_directory(
    session: AsyncSession, directory: Path, service: Optional[GalleryService] = None
) -> ImportReport:
    service = service or GalleryService()
    files = sorted(path for path in Path(directory).glob("*.json") if path.is_file())
    print(f"Found {len(files)} files to process...")

    known_names = await existing_person_names(session)
    report = ImportReport()

    for path in files:
        print(f"Processing {path.name}")
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(record, dict):
                raise ValueError("expected a JSON object")

            status = record.get("status")
            if status != "success":
                print(f"  Skipping {record.get('username')} - status: {status}")
                report.skipped.append(path.name)
                continue

            person_name = InputValidator.validate_person_name(record.get("username"))
            if person_name in known_names:
                print(f"  {person_name} already exists, skipping")
                report.skipped.append(path.name)
                continue

            item = await service.create_item(
                session,
                SYSTEM_USER,
                person_name,
                f"data:image/png;base64,{record.get('generated_avatar') or ''}",
                created_at=parse_created_at(record.get("created_at")),
            )
        except (OSError, ValueError, GalleryAPIException) as e:
            logger.warning(f"Import of {path.name} failed: {e}")
            print(f"  Failed to import {path.name}: {e}")
            report.failed.append(path.name)
            continue

        known_names.add(person_name)
        report.imported.append(path.name)
        print(f"  Imported {person_name} (ID: {item.id})")

    print("\nImport finished")
    print(f"Imported: {len(report.imported)}")
    print(f"Skipped: {len(report.skipped)}")
    print(f"Failed: {len(report.failed)}")
    return report


async def check_gallery(session: AsyncSession) -> CheckReport:
    """Count stored images by storage form: inline data URI or remote URL"""
    records = await list_records(session)
    report = CheckReport(total=len(records))
    print(f"The database holds {report.total} records\n")

    for item in records:
        inline = item.generated_image.startswith("data:")
        if inline:
            report.data_uri_count += 1
        print(f"{item.person_name}:")
        print(f"  ID: {item.id}")
        print(f"  Generated image: {'data URI' if inline else 'URL'}")

    report.url_count = report.total - report.data_uri_count
    print(f"\nData URI: {report.data_uri_count}")
    print(f"URL: {report.url_count}")
    return report


def print_records(records: List[GalleryItem]):
    print("\nRecords currently in the database:")
    for item in records:
        print(f"- {item.person_name} - {item.created_at.isoformat()}")


async def run(command: str, directory: Optional[Path] = None) -> int:
    await create_db_and_tables()
    async with async_session() as session:
        try:
            if command == "import":
                await import_directory(session, directory)
                print_records(await list_records(session))
            else:
                await check_gallery(session)
        except SQLAlchemyError as e:
            logger.error(f"Gallery {command} failed: {e}")
            print(f"Gallery {command} failed: {e}")
            return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import or check gallery data")
    subcommands = parser.add_subparsers(dest="command", required=True)
    import_parser = subcommands.add_parser("import", help="Import generated avatars")
    import_parser.add_argument("directory", type=Path, help="Directory of *.json records")
    subcommands.add_parser("check", help="Summarize stored gallery images")
    args = parser.parse_args(argv)

    if args.command == "import" and not args.directory.is_dir():
        print(f"Not a directory: {args.directory}")
        return 1

    setup_logging()

    return asyncio.run(run(args.command, getattr(args, "directory", None)))


if __name__ == "__main__":
    sys.exit(main())
