#!/usr/bin/env python3
"""
Import every audio/image file of a directory into a lesson.

Usage:
  python scripts/import_directory.py LESSON_ID ./lesson-files
  python scripts/import_directory.py 7 ./files --choices 4 --max-dimension 500 --workers 4
  python scripts/import_directory.py 7 ./files --allow-memory   # dry run without a database
"""
import sys
import json
import argparse
import mimetypes
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
load_dotenv(Path(__file__).parent.parent / '.env')

from modules.flashcards import ImportValidationError, UploadedFile, import_batch  # noqa: E402
from modules.storage import InMemoryRecordStore, get_blob_store, get_record_store  # noqa: E402


def read_directory(directory: Path):
    files = []
    for path in sorted(p for p in directory.iterdir() if p.is_file() and not p.name.startswith('.')):
        mime, _ = mimetypes.guess_type(path.name)
        files.append(UploadedFile(display_name=path.name, mime_type=mime, data=path.read_bytes()))
    return files


def main(argv=None):
    parser = argparse.ArgumentParser(description='Bulk-import flashcards from a directory')
    parser.add_argument('lesson_id')
    parser.add_argument('directory', type=Path)
    parser.add_argument('--choices', type=int, default=None, help='Images per card (default FLASHCARD_CHOICES_PER_CARD)')
    parser.add_argument('--max-dimension', type=int, default=None, help='Bounding box edge in pixels')
    parser.add_argument('--workers', type=int, default=None, help='Cards processed in parallel')
    parser.add_argument('--timeout', type=float, default=None, help='Stop starting new cards after N seconds')
    parser.add_argument('--allow-memory', action='store_true', help='Run even though RECORD_BACKEND keeps records only in memory')
    args = parser.parse_args(argv)

    if not args.directory.is_dir():
        parser.error(f'not a directory: {args.directory}')

    options = {
        'choices_per_card': args.choices,
        'max_image_dimension': args.max_dimension,
        'max_workers': args.workers,
        'timeout_seconds': args.timeout,
    }
    record_store = get_record_store()
    if isinstance(record_store, InMemoryRecordStore):
        if not args.allow_memory:
            print('RECORD_BACKEND=memory: records would be lost when this process exits. Set RECORD_BACKEND=postgres or pass --allow-memory.', file=sys.stderr)
            return 2
        print('Warning: records are kept in memory only; stored blobs will have no durable flashcard rows', file=sys.stderr)

    try:
        report = import_batch(args.lesson_id, read_directory(args.directory), options, blob_store=get_blob_store(), record_store=record_store)
    except ImportValidationError as e:
        print(f'Invalid import: {e}', file=sys.stderr)
        return 2

    print(json.dumps(report.model_dump(mode='json'), indent=2))
    return 0 if report.failed == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
