#!/usr/bin/env python3
"""
Initialize the Postgres tables used by the import service.
Schema:
  - lessons: lesson metadata (title, language)
  - flashcards: one multiple-choice card per imported audio file

Usage:
  python scripts/init_db.py          # Create tables (preserve existing data)
  python scripts/init_db.py --reset  # Drop and recreate tables
"""
import os
import sys
import argparse
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / '.env')

SCHEMA = """
CREATE TABLE IF NOT EXISTS lessons (
    id SERIAL PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    language TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT now() NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT now() NOT NULL
);

CREATE TABLE IF NOT EXISTS flashcards (
    id SERIAL PRIMARY KEY,
    lesson_id INTEGER NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
    audio_key TEXT NOT NULL,
    audio_url TEXT NOT NULL,
    image_choices JSONB NOT NULL DEFAULT '[]'::jsonb,  -- [{key, url, backend}], answer order
    correct_image_index INTEGER NOT NULL CHECK (correct_image_index >= 0),
    blob_backend TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT now() NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT now() NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_flashcards_lesson ON flashcards(lesson_id);
"""

DROP = """
DROP TABLE IF EXISTS flashcards;
DROP TABLE IF EXISTS lessons;
"""


def main():
    parser = argparse.ArgumentParser(description='Create import service tables')
    parser.add_argument('--reset', action='store_true', help='Drop existing tables first')
    args = parser.parse_args()

    import psycopg2

    try:
        conn = psycopg2.connect(
            host=os.getenv('DB_HOST', 'localhost'),
            port=int(os.getenv('DB_PORT', '5432')),
            dbname=os.getenv('DB_NAME', 'lingocards'),
            user=os.getenv('DB_USER', 'postgres'),
            password=os.getenv('DB_PASSWORD', ''),
        )
    except psycopg2.OperationalError as e:
        print(f'Could not connect to Postgres: {e}')
        sys.exit(1)

    with conn:
        with conn.cursor() as cur:
            if args.reset:
                print('Dropping tables...')
                cur.execute(DROP)
            cur.execute(SCHEMA)
    conn.close()
    print('Tables ready: lessons, flashcards')


if __name__ == '__main__':
    main()
