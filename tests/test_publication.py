import logging

import pytest

from conftest import db
from pg_replication.errors import DDLError
from pg_replication.publication import PublicationReconciler, diff_tables


def test_diff_tables_is_two_set_differences():
    to_add, to_remove = diff_tables(["A", "B", "C"], ["B", "C", "D"])
    assert to_add == ["A"]
    assert to_remove == ["D"]


def test_diff_tables_ignores_order_and_duplicates():
    assert diff_tables(["C", "A", "A"], ["A", "C"]) == ([], [])
    assert diff_tables(["B", "A"], []) == (["A", "B"], [])


def test_creates_publication_in_single_statement(cluster):
    source = cluster.add("source", ["users", "posts"])
    handle = cluster(db("source"))
    handle.connect()

    change = PublicationReconciler("app_pub").reconcile(handle, ["users", "posts", "users"])

    assert change.created
    assert change.to_add == ("users", "posts")
    assert source.ddl_statements() == ['CREATE PUBLICATION "app_pub" FOR TABLE "users", "posts"']
    assert source.publications["app_pub"] == {"users", "posts"}


def test_existing_publication_adds_and_drops_individually(cluster):
    source = cluster.add("source")
    source.publications["app_pub"] = {"B", "C", "D"}
    handle = cluster(db("source"))
    handle.connect()

    change = PublicationReconciler("app_pub").reconcile(handle, ["A", "B", "C"])

    assert not change.created
    assert change.to_add == ("A",)
    assert change.to_remove == ("D",)
    assert source.ddl_statements() == [
        'ALTER PUBLICATION "app_pub" ADD TABLE "A"',
        'ALTER PUBLICATION "app_pub" DROP TABLE "D"',
    ]
    assert source.publications["app_pub"] == {"A", "B", "C"}


def test_second_run_issues_no_alter_statements(cluster):
    source = cluster.add("source")
    source.publications["app_pub"] = {"old"}
    handle = cluster(db("source"))
    handle.connect()
    reconciler = PublicationReconciler("app_pub")

    reconciler.reconcile(handle, ["users", "posts"])
    first = len(source.ddl_statements())
    change = reconciler.reconcile(handle, ["posts", "users"])

    assert first == 3
    assert not change.changed
    assert len(source.ddl_statements()) == first
    assert reconciler.published_tables(handle) == {"users", "posts"}


def test_failed_alter_does_not_stop_remaining_tables(cluster):
    source = cluster.add("source")
    source.publications["app_pub"] = {"keep", "gone"}
    source.fail_patterns.append('ADD TABLE "broken"')
    handle = cluster(db("source"))
    handle.connect()

    with pytest.raises(DDLError) as exc:
        PublicationReconciler("app_pub").reconcile(handle, ["keep", "broken", "fresh"])

    assert set(exc.value.failures) == {"broken"}
    # every other ALTER still went through
    assert source.publications["app_pub"] == {"keep", "fresh"}


def test_create_failure_raises_ddl_error(cluster):
    source = cluster.add("source")
    source.fail_patterns.append("^CREATE PUBLICATION")
    handle = cluster(db("source"))
    handle.connect()

    with pytest.raises(DDLError, match="CREATE PUBLICATION app_pub"):
        PublicationReconciler("app_pub").reconcile(handle, ["users"])


def test_drift_is_read_only(cluster):
    source = cluster.add("source")
    source.publications["app_pub"] = {"users", "legacy"}
    handle = cluster(db("source"))
    handle.connect()

    missing, extra = PublicationReconciler("app_pub").drift(handle, ["users", "posts"])

    assert (missing, extra) == (["posts"], ["legacy"])
    assert source.ddl_statements() == []


def test_drift_without_publication_reports_everything_missing(cluster):
    cluster.add("source")
    handle = cluster(db("source"))
    handle.connect()

    assert PublicationReconciler("app_pub").drift(handle, ["b", "a"]) == (["a", "b"], [])


def test_warns_when_publication_still_drifts_after_alters(cluster, caplog):
    source = cluster.add("source")
    source.publications["app_pub"] = {"users"}
    source.ignored_patterns.append(r'ADD TABLE "posts"')
    handle = cluster(db("source"))
    handle.connect()

    with caplog.at_level(logging.WARNING, logger="pg_replication.publication"):
        change = PublicationReconciler("app_pub").reconcile(handle, ["users", "posts"])

    assert change.to_add == ("posts",)
    assert "still drifts" in caplog.text
    assert "missing=['posts']" in caplog.text
