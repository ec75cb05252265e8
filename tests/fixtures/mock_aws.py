from io import BytesIO
from unittest.mock import MagicMock

from botocore.exceptions import ClientError


def _client_error(code, op):
    return ClientError({'Error': {'Code': code, 'Message': code}}, op)


class MockS3Client:
    def __init__(self):
        self.objects = {}
        self.put_calls = 0
        # number of upcoming put_object calls that raise a throttling error
        self.fail_puts = 0

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.put_calls += 1
        if self.fail_puts:
            self.fail_puts -= 1
            raise _client_error('SlowDown', 'PutObject')
        self.objects[(Bucket, Key)] = {'Body': Body, 'ContentType': ContentType}
        return {'ETag': '"etag"'}

    def head_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise _client_error('404', 'HeadObject')
        obj = self.objects[(Bucket, Key)]
        return {'ContentLength': len(obj['Body']), 'ContentType': obj['ContentType']}

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise _client_error('NoSuchKey', 'GetObject')
        obj = self.objects[(Bucket, Key)]
        return {'Body': BytesIO(obj['Body']), 'ContentLength': len(obj['Body']), 'ContentType': obj['ContentType']}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)
        return {}

    def head_bucket(self, Bucket):
        return {}


def fake_boto3_client(name, *a, **kw):
    if name == 's3':
        return MockS3Client()
    return MagicMock()
