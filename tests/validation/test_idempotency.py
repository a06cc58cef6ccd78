from bulkgrant.validation.idempotency import request_hash


def test_request_hash_requires_a_key():
    assert request_hash("admin-1", ["a@example.com"], ["p1"], "project_user", None) is None
    assert request_hash("admin-1", ["a@example.com"], ["p1"], "project_user", "") is None


def test_request_hash_depends_on_request_and_key():
    base = request_hash("admin-1", ["a@example.com"], ["p1"], "project_user", "k1")
    assert len(base) == 64
    assert base == request_hash("admin-1", ["a@example.com"], ["p1"], "project_user", "k1")
    assert base != request_hash("admin-1", ["a@example.com"], ["p1"], "project_user", "k2")
    assert base != request_hash("admin-1", ["a@example.com"], ["p1"], "viewer", "k1")
    assert base != request_hash("admin-2", ["a@example.com"], ["p1"], "project_user", "k1")
    assert base != request_hash("admin-1", ["b@example.com"], ["p1"], "project_user", "k1")


def test_request_hash_ignores_list_order():
    first = request_hash("admin-1", ["a@example.com", "b@example.com"], ["p1", "p2"], "project_user", "k1")
    second = request_hash("admin-1", ["b@example.com", "a@example.com"], ["p2", "p1"], "project_user", "k1")
    assert first == second
