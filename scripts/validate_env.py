import os
import sys
import argparse
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / '.env')

errors = []
warnings = []

parser = argparse.ArgumentParser()
parser.add_argument('--strict', '-s', action='store_true', help='Convert warnings to failures')
args = parser.parse_args()
STRICT = args.strict

required = {
    'server': ['ENVIRONMENT', 'HOST', 'PORT'],
}
blob_backend = os.getenv('BLOB_BACKEND', 'local').lower()
record_backend = os.getenv('RECORD_BACKEND', 'memory').lower()
if blob_backend == 's3':
    required['aws'] = ['AWS_REGION', 'AWS_S3_BUCKET']
if record_backend == 'postgres':
    required['database'] = ['DB_HOST', 'DB_PORT', 'DB_NAME', 'DB_USER', 'DB_PASSWORD']


def check_presence(cat, keys):
    for k in keys:
        if not os.getenv(k):
            errors.append(f"{cat}: Missing {k}")


for cat, keys in required.items():
    check_presence(cat, keys)

try:
    port = int(os.getenv('PORT', '0'))
    if port < 1 or port > 65535:
        errors.append('PORT must be integer between 1 and 65535')
except ValueError:
    errors.append('PORT must be an integer')

if blob_backend not in ('local', 's3'):
    errors.append("BLOB_BACKEND must be 'local' or 's3'")
if record_backend not in ('memory', 'postgres'):
    errors.append("RECORD_BACKEND must be 'memory' or 'postgres'")
if record_backend == 'memory':
    warnings.append('RECORD_BACKEND=memory: flashcards are lost on restart')

for key, default, minimum in (('FLASHCARD_CHOICES_PER_CARD', '4', 2), ('IMAGE_MAX_DIMENSION', '500', 1), ('IMPORT_MAX_WORKERS', '1', 1), ('IMAGE_RETRY_ATTEMPTS', '3', 1)):
    try:
        if int(os.getenv(key, default)) < minimum:
            errors.append(f'{key} must be >= {minimum}')
    except ValueError:
        errors.append(f'{key} must be an integer')

try:
    from PIL import ImageColor
    ImageColor.getrgb(os.getenv('IMAGE_BACKGROUND', '#ffffff'))
except ValueError:
    errors.append('IMAGE_BACKGROUND is not a valid color')

if blob_backend == 'local':
    root = Path(os.getenv('BLOB_LOCAL_ROOT', 'uploads'))
    try:
        root.mkdir(parents=True, exist_ok=True)
        if not os.access(root, os.W_OK):
            errors.append(f'Blob root not writable: {root}')
        else:
            print(f'Blob root: {root.resolve()}')
    except Exception as e:
        errors.append(f'Failed to create blob root {root}: {e}')
else:
    try:
        import boto3
        s3 = boto3.client('s3', region_name=os.getenv('AWS_REGION'))
        s3.head_bucket(Bucket=os.getenv('AWS_S3_BUCKET'))
        print('S3: bucket reachable')
    except Exception as e:
        errors.append(f'S3 check failed: {e}')

if record_backend == 'postgres':
    try:
        import psycopg2
        conn = psycopg2.connect(host=os.getenv('DB_HOST'),
                                port=int(os.getenv('DB_PORT', '5432')),
                                dbname=os.getenv('DB_NAME'),
                                user=os.getenv('DB_USER'),
                                password=os.getenv('DB_PASSWORD'))
        cur = conn.cursor()
        cur.execute("SELECT to_regclass('public.flashcards')")
        if cur.fetchone()[0] is None:
            errors.append('Postgres: flashcards table missing, run scripts/init_db.py')
        else:
            print('Postgres: OK')
        cur.close(); conn.close()
    except Exception as e:
        errors.append(f'Postgres connection failed: {e}')

if os.getenv('REDIS_HOST') or os.getenv('REDIS_URL'):
    try:
        import redis
        if os.getenv('REDIS_URL'):
            r = redis.from_url(os.getenv('REDIS_URL'))
        else:
            r = redis.Redis(host=os.getenv('REDIS_HOST'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None)
        if r.ping():
            print('Redis: OK')
    except Exception as e:
        warnings.append(f'Redis check failed: {e}')
else:
    warnings.append('Redis not configured; import task status is kept in memory')

if errors:
    print('\nENV validation failed:')
    for e in errors:
        print(' -', e)
    sys.exit(1)

if warnings:
    print('\nWarnings:')
    for w in warnings:
        print(' -', w)
    if STRICT:
        print('\nStrict mode enabled: treating warnings as errors')
        sys.exit(1)

print('\nAll critical validations passed')
sys.exit(0)
