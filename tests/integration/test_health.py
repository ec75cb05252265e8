import pytest


@pytest.mark.integration
def test_health(app_client):
    r = app_client.get('/health')
    assert r.status_code == 200
    assert r.json()['status'] == 'ok'


@pytest.mark.integration
def test_ready_without_redis(app_client):
    r = app_client.get('/ready')
    assert r.status_code == 200
    services = r.json()['services']
    assert services['records'] == 'ok'
    assert services['blobs'] == 'ok'
    assert services['redis'].startswith('error')


@pytest.mark.integration
def test_ready_reports_broken_store(app_client, monkeypatch, record_store):
    monkeypatch.setattr(record_store, 'check', lambda: 'error: database offline')
    r = app_client.get('/ready')
    assert r.status_code == 503
    assert r.json()['status'] == 'not ready'
